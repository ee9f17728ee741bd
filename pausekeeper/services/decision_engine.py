"""
Pause/unpause decision engine.

Given the current resource document, its decoded pause state and the
current time, decides whether the resource should be paused, unpaused or
left alone, and when it has to be looked at again. The engine is pure: it
never talks to the API server and never mutates its inputs. A transition
is returned as a new resource document carrying both the pause marker and
the new pause state, to be written in a single update.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pausekeeper.models.constants import (
    ANNOTATION_KEY_PAUSE_STATE,
    ANNOTATION_KEY_RECONCILIATION_PAUSED,
    DEFAULT_FROZEN_DURATION,
    PAUSED_VALUE,
    ConditionType,
    TransitionAction,
    TransitionReason,
)
from pausekeeper.models.pause_state import PauseState
from pausekeeper.models.resource import ManagedResource
from pausekeeper.services.drift_detector import is_updated, strip_owned_annotations
from pausekeeper.services.pause_state_codec import encode_pause_state
from pausekeeper.services.unpause_scheduler import compute_scheduled_unpause_time
from pausekeeper.utils.timestamp import ensure_utc


class PausePolicy(BaseModel):
    """Timing policy and annotation keys used by the decision engine."""

    model_config = ConfigDict(frozen=True)

    frozen_duration: timedelta = Field(
        default=DEFAULT_FROZEN_DURATION,
        description="Minimum time a resource stays unpaused before it may be paused again"
    )
    unpause_poll_interval: Optional[timedelta] = Field(
        default=None,
        description="Maximum time a resource stays paused; None disables forced unpause"
    )
    pause_annotation_key: str = Field(default=ANNOTATION_KEY_RECONCILIATION_PAUSED)
    pause_state_annotation_key: str = Field(default=ANNOTATION_KEY_PAUSE_STATE)

    @field_validator('frozen_duration', mode='after')
    @classmethod
    def validate_frozen_duration(cls, v: timedelta) -> timedelta:
        if v < timedelta(0):
            raise ValueError("frozen_duration must not be negative")
        return v

    @field_validator('unpause_poll_interval', mode='after')
    @classmethod
    def validate_poll_interval(cls, v: Optional[timedelta]) -> Optional[timedelta]:
        if v is not None and v <= timedelta(0):
            raise ValueError("unpause_poll_interval must be positive")
        return v

    @property
    def owned_annotation_keys(self) -> Tuple[str, str]:
        return (self.pause_annotation_key, self.pause_state_annotation_key)


@dataclass
class Decision:
    """
    Result of one evaluation.

    resource and state are set only when action is PAUSE or UNPAUSE; they
    hold the document to write and the state encoded into it.
    """

    action: TransitionAction
    reason: TransitionReason
    requeue_after: Optional[timedelta] = None
    resource: Optional[ManagedResource] = None
    state: Optional[PauseState] = None

    @property
    def requires_mutation(self) -> bool:
        return self.action != TransitionAction.NONE


def is_paused_value(value: Optional[str]) -> bool:
    return value == PAUSED_VALUE


class DecisionEngine:
    """
    State machine deciding the pause state of one resource at a time.

    Holds no per-resource state; one engine may serve any number of
    resources concurrently.
    """

    def __init__(self, policy: Optional[PausePolicy] = None, rng: Optional[random.Random] = None):
        """
        Initialize the engine.

        Args:
            policy: Timing policy; defaults to a 5 minute frozen window and no poll interval
            rng: Random source for the unpause jitter
        """
        self.policy = policy or PausePolicy()
        self.rng = rng

    def decide(self, resource: ManagedResource, state: Optional[PauseState], now: datetime) -> Decision:
        """
        Decide what to do with a resource.

        Args:
            resource: Current resource document
            state: Decoded pause state, None if the resource never was paused by us
            now: Evaluation time

        Returns:
            The decision, including the mutated document for transitions

        Raises:
            ValueError: If the resource's status.conditions cannot be parsed
        """
        now = ensure_utc(now)
        pause_value = resource.get_annotation(self.policy.pause_annotation_key)

        # We always write the marker and the state together; a marker without
        # state was set by someone else and that resource is not ours to manage.
        if is_paused_value(pause_value) and state is None:
            return Decision(TransitionAction.NONE, TransitionReason.PAUSED_EXTERNALLY)

        if state is None:
            state = PauseState(paused=False)

        if resource.is_deleting and state.paused:
            return self._unpause(resource, state, now, TransitionReason.RESOURCE_DELETED)

        if state.paused:
            return self._decide_paused(resource, state, now)

        return self._decide_unpaused(resource, state, now)

    def _decide_paused(self, resource: ManagedResource, state: PauseState, now: datetime) -> Decision:
        if is_updated(state.snapshot, resource.to_dict(), self.policy.owned_annotation_keys):
            return self._unpause(resource, state, now, TransitionReason.RESOURCE_UPDATED)

        interval = self.policy.unpause_poll_interval
        if interval is not None:
            due = state.scheduled_unpause_time or state.last_pause_time + interval
            if now >= due:
                return self._unpause(resource, state, now, TransitionReason.POLL_INTERVAL_ELAPSED)
            return Decision(
                TransitionAction.NONE,
                TransitionReason.WAITING_FOR_POLL_INTERVAL,
                requeue_after=due - now,
            )

        return Decision(TransitionAction.NONE, TransitionReason.KEEP_PAUSED)

    def _decide_unpaused(self, resource: ManagedResource, state: PauseState, now: datetime) -> Decision:
        if state.last_unpause_time is not None:
            frozen_until = state.last_unpause_time + self.policy.frozen_duration
            if now < frozen_until:
                return Decision(
                    TransitionAction.NONE,
                    TransitionReason.FROZEN_WINDOW,
                    requeue_after=frozen_until - now,
                )

        for condition_type in ConditionType.required():
            condition = resource.get_condition(condition_type)
            if condition is None or not condition.is_true:
                return Decision(TransitionAction.NONE, TransitionReason.NOT_READY)

        return self._pause(resource, state, now, TransitionReason.READY_AND_SYNCED)

    def _pause(self, resource: ManagedResource, state: PauseState, now: datetime,
               reason: TransitionReason) -> Decision:
        result = self.apply_pause(resource, state, now)
        if result is None:
            return Decision(TransitionAction.NONE, reason)
        mutated, new_state = result
        return Decision(TransitionAction.PAUSE, reason, resource=mutated, state=new_state)

    def _unpause(self, resource: ManagedResource, state: PauseState, now: datetime,
                 reason: TransitionReason) -> Decision:
        result = self.apply_unpause(resource, state, now)
        if result is None:
            return Decision(TransitionAction.NONE, reason)
        mutated, new_state = result
        return Decision(TransitionAction.UNPAUSE, reason, resource=mutated, state=new_state)

    def apply_pause(
        self,
        resource: ManagedResource,
        state: Optional[PauseState],
        now: datetime
    ) -> Optional[Tuple[ManagedResource, PauseState]]:
        """
        Build the paused document and state.

        Returns:
            (mutated copy of resource, new state), or None if already paused
        """
        if state is not None and state.paused:
            return None

        now = ensure_utc(now)
        interval = self.policy.unpause_poll_interval
        new_state = PauseState(
            paused=True,
            snapshot=strip_owned_annotations(resource.to_dict(), self.policy.owned_annotation_keys),
            last_pause_time=now,
            last_unpause_time=state.last_unpause_time if state is not None else None,
            scheduled_unpause_time=(
                compute_scheduled_unpause_time(now, interval, self.rng) if interval is not None else None
            ),
        )

        mutated = resource.deep_copy()
        annotations = mutated.get_annotations()
        annotations[self.policy.pause_annotation_key] = PAUSED_VALUE
        annotations[self.policy.pause_state_annotation_key] = encode_pause_state(new_state)
        mutated.set_annotations(annotations)
        return mutated, new_state

    def apply_unpause(
        self,
        resource: ManagedResource,
        state: Optional[PauseState],
        now: datetime
    ) -> Optional[Tuple[ManagedResource, PauseState]]:
        """
        Build the unpaused document and state.

        Returns:
            (mutated copy of resource, new state), or None if not paused
        """
        if state is None or not state.paused:
            return None

        new_state = PauseState(
            paused=False,
            last_pause_time=state.last_pause_time,
            last_unpause_time=ensure_utc(now),
        )

        mutated = resource.deep_copy()
        annotations = mutated.get_annotations()
        annotations.pop(self.policy.pause_annotation_key, None)
        annotations[self.policy.pause_state_annotation_key] = encode_pause_state(new_state)
        mutated.set_annotations(annotations)
        return mutated, new_state
