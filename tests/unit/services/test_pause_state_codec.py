"""Unit tests for pause-state annotation encoding and decoding."""

import json
from datetime import timedelta

import pytest

from pausekeeper.exceptions import MalformedStateError
from pausekeeper.models.constants import ANNOTATION_KEY_PAUSE_STATE
from pausekeeper.models.pause_state import PauseState
from pausekeeper.services.pause_state_codec import decode_pause_state, encode_pause_state
from tests.utils import T0, ResourceFactory


def _with_state(raw: str):
    return ResourceFactory.create_resource(annotations={ANNOTATION_KEY_PAUSE_STATE: raw})


@pytest.mark.unit
class TestDecodePauseState:

    def test_absent_annotation_returns_none(self):
        assert decode_pause_state(ResourceFactory.create_resource()) is None

    def test_decodes_paused_state(self):
        raw = json.dumps({
            "paused": True,
            "snapshot": {"spec": {"a": 1}},
            "lastPauseTime": "2024-01-01T12:00:00Z",
        })

        state = decode_pause_state(_with_state(raw))

        assert state.paused is True
        assert state.snapshot == {"spec": {"a": 1}}
        assert state.last_pause_time == T0

    @pytest.mark.parametrize("raw", [
        "not json",
        "",
        "[]",
        '{"paused": "maybe"}',
        '{"paused": true}',
        '{"paused": false, "lastUnpauseTime": "yesterday"}',
    ])
    def test_malformed_values_raise(self, raw):
        with pytest.raises(MalformedStateError) as exc_info:
            decode_pause_state(_with_state(raw))

        error = exc_info.value
        assert error.raw_value == raw
        assert error.recoverable is False
        assert error.context["annotation_key"] == ANNOTATION_KEY_PAUSE_STATE

    def test_custom_annotation_key(self):
        resource = ResourceFactory.create_resource(annotations={"example.com/state": '{"paused": false}'})

        assert decode_pause_state(resource) is None
        assert decode_pause_state(resource, "example.com/state") == PauseState(paused=False)


@pytest.mark.unit
class TestEncodePauseState:

    def test_absent_fields_are_omitted(self):
        encoded = encode_pause_state(PauseState(paused=False, last_unpause_time=T0))

        assert json.loads(encoded) == {"paused": False, "lastUnpauseTime": "2024-01-01T12:00:00Z"}

    def test_paused_flag_is_always_written(self):
        assert json.loads(encode_pause_state(PauseState())) == {"paused": False}

    @pytest.mark.parametrize("fields", [
        {},
        {"last_pause_time": T0},
        {"last_unpause_time": T0},
        {"last_pause_time": T0 - timedelta(hours=1), "last_unpause_time": T0},
        {"paused": True, "snapshot": {"spec": {}}, "last_pause_time": T0},
        {"paused": True, "snapshot": {"spec": {"x": [1, 2]}, "metadata": {"labels": {"a": "b"}}},
         "last_pause_time": T0, "last_unpause_time": T0 - timedelta(days=1),
         "scheduled_unpause_time": T0 + timedelta(minutes=63, microseconds=5)},
    ])
    def test_round_trip(self, fields):
        state = PauseState(**fields)

        decoded = decode_pause_state(_with_state(encode_pause_state(state)))

        assert decoded == state
