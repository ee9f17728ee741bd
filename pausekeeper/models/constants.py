"""
Constants for pausekeeper.

Annotation keys, condition names and the enums shared by the decision
engine, the reconciler and the worker.
"""

from datetime import timedelta
from enum import Enum
from typing import List

# Annotation that makes Crossplane stop reconciling a managed resource.
# ref https://github.com/crossplane/crossplane-runtime/issues/351
ANNOTATION_KEY_RECONCILIATION_PAUSED = "crossplane.io/paused"

# Annotation holding the JSON-encoded PauseState.
ANNOTATION_KEY_PAUSE_STATE = "cloud.pingcap.com/pause-info"

# The only pause marker value this system writes.
PAUSED_VALUE = "true"

# Minimum time a resource stays unpaused before it may be paused again.
# There is no guarantee the external controller reconciles the resource
# before the pause annotation would come back, so keep it unpaused a while.
DEFAULT_FROZEN_DURATION = timedelta(minutes=5)

DEFAULT_MAX_CONCURRENT_RECONCILES = 10

DEFAULT_MAX_CONFLICT_RETRIES = 3

# Fraction of the poll interval used as the upper bound of the unpause jitter.
UNPAUSE_JITTER_FACTOR = 0.1


class ConditionType(Enum):
    """Observed-state condition types consulted before pausing."""
    
    READY = "Ready"
    SYNCED = "Synced"
    
    @classmethod
    def required(cls) -> List['ConditionType']:
        """Conditions that must all be True before a resource is paused."""
        return [cls.READY, cls.SYNCED]


class ConditionStatus(Enum):
    """Tri-state condition status; only TRUE is affirmative."""
    
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class TransitionAction(Enum):
    """Outcome of a single decision."""
    
    NONE = "none"
    PAUSE = "pause"
    UNPAUSE = "unpause"
    
    @classmethod
    def values(cls) -> List[str]:
        """All action values as strings."""
        return [action.value for action in cls]


class TransitionReason(Enum):
    """Why the decision engine reached its outcome."""
    
    PAUSED_EXTERNALLY = "paused by another actor"
    RESOURCE_DELETED = "resource deleted"
    RESOURCE_UPDATED = "resource updated"
    POLL_INTERVAL_ELAPSED = "poll interval elapsed"
    WAITING_FOR_POLL_INTERVAL = "waiting for poll interval"
    KEEP_PAUSED = "keep paused"
    FROZEN_WINDOW = "frozen window"
    NOT_READY = "not ready or not synced"
    READY_AND_SYNCED = "ready and synced"


class EvaluationPhase(Enum):
    """Phase of an evaluation, reported with every surfaced error."""
    
    FETCH = "fetch"
    DECODE = "decode"
    DECIDE = "decide"
    MUTATE = "mutate"
