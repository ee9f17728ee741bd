"""Unit tests for the PauseState model."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from pausekeeper.models.pause_state import PauseState
from tests.utils import T0


@pytest.mark.unit
class TestPauseStateValidation:
    """Test PauseState invariants."""

    def test_default_is_unpaused(self):
        state = PauseState()

        assert state.paused is False
        assert state.snapshot is None
        assert state.last_pause_time is None
        assert state.last_unpause_time is None
        assert state.scheduled_unpause_time is None

    def test_paused_requires_snapshot(self):
        with pytest.raises(ValidationError, match="snapshot"):
            PauseState(paused=True, last_pause_time=T0)

    def test_paused_requires_last_pause_time(self):
        with pytest.raises(ValidationError, match="lastPauseTime"):
            PauseState(paused=True, snapshot={"spec": {}})

    def test_unpaused_rejects_snapshot(self):
        with pytest.raises(ValidationError, match="must not carry a snapshot"):
            PauseState(paused=False, snapshot={"spec": {}})

    def test_naive_timestamps_are_treated_as_utc(self):
        state = PauseState(
            paused=True,
            snapshot={"spec": {}},
            last_pause_time=datetime(2024, 1, 1, 12, 0, 0),
        )

        assert state.last_pause_time == T0
        assert state.last_pause_time.tzinfo is not None

    def test_aware_timestamps_are_converted_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        state = PauseState(last_unpause_time=datetime(2024, 1, 1, 14, 0, 0, tzinfo=plus_two))

        assert state.last_unpause_time == T0
        assert state.last_unpause_time.utcoffset() == timedelta(0)


@pytest.mark.unit
class TestPauseStateKeys:
    """Test JSON key handling."""

    def test_dump_uses_camel_case_keys(self):
        state = PauseState(
            paused=True,
            snapshot={"spec": {"a": 1}},
            last_pause_time=T0,
            scheduled_unpause_time=T0 + timedelta(hours=1),
        )

        dumped = state.model_dump(by_alias=True, exclude_none=True)

        assert set(dumped) == {"paused", "snapshot", "lastPauseTime", "scheduledUnpauseTime"}

    def test_legacy_keys_are_accepted(self):
        raw = (
            '{"pause": true, "object": {"spec": {"a": 1}}, '
            '"lastPauseTime": "2024-01-01T12:00:00Z", '
            '"lastUnPauseTime": "2024-01-01T11:00:00Z", '
            '"shouldUnpauseTime": "2024-01-01T13:00:00Z"}'
        )

        state = PauseState.model_validate_json(raw)

        assert state.paused is True
        assert state.snapshot == {"spec": {"a": 1}}
        assert state.last_unpause_time == T0 - timedelta(hours=1)
        assert state.scheduled_unpause_time == T0 + timedelta(hours=1)

    def test_field_names_are_accepted(self):
        state = PauseState(paused=False, last_unpause_time=T0)

        assert state.last_unpause_time == T0
