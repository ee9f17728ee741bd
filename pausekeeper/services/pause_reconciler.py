"""
PauseReconciler - evaluation entry point for a single resource.

Fetches the resource, decodes its pause state, asks the decision engine
what to do and writes the result back with a conditional update. A
resourceVersion conflict restarts the whole cycle from a fresh fetch, a
bounded number of times.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from pausekeeper.exceptions import (
    ConflictError,
    MalformedStateError,
    ReconcileError,
    ResourceNotFoundError,
    TransientAccessError,
)
from pausekeeper.integrations.kubernetes.base import ResourceClient
from pausekeeper.models.constants import (
    DEFAULT_MAX_CONFLICT_RETRIES,
    EvaluationPhase,
    TransitionAction,
    TransitionReason,
)
from pausekeeper.models.resource import ResourceIdentity
from pausekeeper.services.decision_engine import Decision, DecisionEngine
from pausekeeper.services.pause_state_codec import decode_pause_state
from pausekeeper.utils.logger import get_module_logger
from pausekeeper.utils.timestamp import utc_now

logger = get_module_logger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of one evaluation as seen by the caller."""

    requeue_after: Optional[timedelta] = None
    action: TransitionAction = TransitionAction.NONE
    reason: Optional[TransitionReason] = None


class PauseReconciler:
    """
    Evaluates one resource identity at a time against the API server.

    Holds no per-resource state. The caller must not evaluate the same
    identity concurrently; distinct identities may run in parallel.
    """

    def __init__(
        self,
        client: ResourceClient,
        engine: DecisionEngine,
        max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize PauseReconciler.

        Args:
            client: API access for fetching and updating resources
            engine: Decision engine holding the pause policy
            max_conflict_retries: Attempts before a conflict is surfaced
            clock: Source of the evaluation time
        """
        if max_conflict_retries < 1:
            raise ValueError("max_conflict_retries must be at least 1")
        self.client = client
        self.engine = engine
        self.max_conflict_retries = max_conflict_retries
        self.clock = clock

    async def evaluate(self, identity: ResourceIdentity) -> ReconcileResult:
        """
        Evaluate and, if needed, pause or unpause one resource.

        Args:
            identity: Resource to evaluate

        Returns:
            ReconcileResult; empty when the resource no longer exists

        Raises:
            ReconcileError: On fetch/update failures, malformed pause state,
                unparsable conditions, or conflicts that persist across retries
        """
        logger.info(f"Start reconcile {identity}")
        start = time.monotonic()
        try:
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await self._evaluate_once(identity)
                except ConflictError as e:
                    if attempt >= self.max_conflict_retries:
                        raise ReconcileError(
                            f"Unable to update {identity}: still conflicting after {attempt} attempt(s)",
                            identity=identity.key,
                            phase=EvaluationPhase.MUTATE.value,
                            cause=e,
                            context={"attempts": attempt},
                        ) from e
                    logger.info(
                        f"Conflict updating {identity}, re-evaluating from a fresh fetch "
                        f"(attempt {attempt}/{self.max_conflict_retries})"
                    )
        finally:
            logger.info(f"Finish reconcile {identity}, took {time.monotonic() - start:.3f}s")

    async def _evaluate_once(self, identity: ResourceIdentity) -> ReconcileResult:
        try:
            resource = await self.client.get(identity)
        except ResourceNotFoundError:
            logger.debug(f"{identity} no longer exists, nothing to do")
            return ReconcileResult()
        except TransientAccessError as e:
            raise ReconcileError(
                f"Unable to get {identity}: {e}", identity=identity.key,
                phase=EvaluationPhase.FETCH.value, cause=e,
            ) from e

        try:
            state = decode_pause_state(resource, self.engine.policy.pause_state_annotation_key)
        except MalformedStateError as e:
            raise ReconcileError(
                f"Unable to parse pause state of {identity}: {e}", identity=identity.key,
                phase=EvaluationPhase.DECODE.value, cause=e,
            ) from e

        try:
            decision = self.engine.decide(resource, state, self.clock())
        except ValueError as e:
            raise ReconcileError(
                f"Unable to decide for {identity}: {e}", identity=identity.key,
                phase=EvaluationPhase.DECIDE.value, cause=e,
            ) from e

        if not decision.requires_mutation:
            self._log_no_op(identity, decision)
            return ReconcileResult(requeue_after=decision.requeue_after, reason=decision.reason)

        try:
            await self.client.update(identity, decision.resource)
        except ResourceNotFoundError:
            logger.debug(f"{identity} disappeared before it could be updated")
            return ReconcileResult()
        except TransientAccessError as e:
            raise ReconcileError(
                f"Unable to {decision.action.value} {identity}: {e}", identity=identity.key,
                phase=EvaluationPhase.MUTATE.value, cause=e,
            ) from e

        # The update itself triggers a watch event for the next evaluation.
        logger.info(f"{decision.action.value} resource {identity}, reason: {decision.reason.value}")
        return ReconcileResult(
            requeue_after=decision.requeue_after,
            action=decision.action,
            reason=decision.reason,
        )

    @staticmethod
    def _log_no_op(identity: ResourceIdentity, decision: Decision) -> None:
        if decision.reason == TransitionReason.PAUSED_EXTERNALLY:
            logger.info(f"Ignore {identity}: paused by another actor")
        elif decision.requeue_after is not None:
            logger.info(
                f"Requeue {identity} after {decision.requeue_after.total_seconds():.0f}s "
                f"({decision.reason.value})"
            )
        else:
            logger.debug(f"No change for {identity} ({decision.reason.value})")
