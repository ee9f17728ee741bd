"""
ReconcileWorker - bounded, per-resource serialized work queue.

Resource identities are enqueued by watch events, resyncs and requeue
timers. The worker runs at most max_concurrent evaluations at once and
never evaluates the same identity twice concurrently: an identity that is
enqueued while in flight is marked dirty and run again afterwards.
"""

import asyncio
from datetime import timedelta
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from pausekeeper.exceptions import PauseKeeperError
from pausekeeper.models.constants import DEFAULT_MAX_CONCURRENT_RECONCILES
from pausekeeper.models.resource import ResourceIdentity
from pausekeeper.services.pause_reconciler import ReconcileResult
from pausekeeper.utils.logger import get_module_logger

logger = get_module_logger(__name__)

ReconcileCallback = Callable[[ResourceIdentity], Awaitable[ReconcileResult]]


class ReconcileWorker:
    """
    Background worker dispatching queued identities to a reconcile callback.

    Runs a dispatch loop that:
    1. Takes the next queued identity
    2. Waits for a free slot (at most max_concurrent evaluations)
    3. Runs the callback in its own task
    4. Schedules a requeue when the result asks for one, or a backoff
       retry when the callback fails
    """

    def __init__(
        self,
        reconcile: ReconcileCallback,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_RECONCILES,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 300.0,
    ):
        """
        Initialize ReconcileWorker.

        Args:
            reconcile: Callback evaluating one identity
                       Signature: async def reconcile(identity: ResourceIdentity) -> ReconcileResult
            max_concurrent: Maximum evaluations running at the same time
            backoff_base_seconds: Delay before the first retry after a failure
            backoff_max_seconds: Upper bound for the retry delay
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.reconcile = reconcile
        self.max_concurrent = max_concurrent
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

        self._queue: "asyncio.Queue[ResourceIdentity]" = asyncio.Queue()
        self._queued: Set[ResourceIdentity] = set()
        self._in_flight: Set[ResourceIdentity] = set()
        self._dirty: Set[ResourceIdentity] = set()
        self._timers: Dict[ResourceIdentity, Tuple[float, asyncio.TimerHandle]] = {}
        self._failures: Dict[ResourceIdentity, int] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._dispatch_task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the dispatch loop."""
        if self._running:
            logger.warning("ReconcileWorker already running")
            return

        self._running = True
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        logger.info(f"ReconcileWorker started (max_concurrent={self.max_concurrent})")

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the worker, cancelling pending timers and in-flight evaluations.

        In-flight evaluations get `timeout` seconds to finish. Each transition
        is a single update, so a cancelled evaluation leaves nothing half done.
        """
        if not self._running:
            return

        logger.info("Stopping ReconcileWorker")
        self._running = False

        for _, handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

        if self._dispatch_task:
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass
            self._dispatch_task = None

        if self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
            if pending:
                logger.warning(f"Cancelling {len(pending)} evaluation(s) that did not finish in {timeout}s")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info("ReconcileWorker stopped")

    def enqueue(self, identity: ResourceIdentity) -> None:
        """Queue an identity for evaluation; duplicates collapse into one run."""
        if identity in self._in_flight:
            self._dirty.add(identity)
            return
        if identity in self._queued:
            return
        self._queued.add(identity)
        self._queue.put_nowait(identity)

    def enqueue_after(self, identity: ResourceIdentity, delay: timedelta) -> None:
        """
        Queue an identity once delay has passed.

        If a timer is already pending for the identity the earlier one wins.
        Ignored once the worker is stopped.
        """
        if not self._running:
            return

        seconds = max(delay.total_seconds(), 0.0)
        if seconds == 0:
            self.enqueue(identity)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        existing = self._timers.get(identity)
        if existing is not None:
            if existing[0] <= deadline:
                return
            existing[1].cancel()

        handle = loop.call_later(seconds, self._fire_timer, identity)
        self._timers[identity] = (deadline, handle)

    def stats(self) -> Dict[str, int]:
        """Queue counters for health reporting."""
        return {
            "queued": len(self._queued),
            "in_flight": len(self._in_flight),
            "scheduled": len(self._timers),
            "failing": len(self._failures),
        }

    def _fire_timer(self, identity: ResourceIdentity) -> None:
        self._timers.pop(identity, None)
        if self._running:
            self.enqueue(identity)

    async def _dispatch_loop(self) -> None:
        """Main dispatch loop - runs until stopped."""
        try:
            while self._running:
                identity = await self._queue.get()
                await self._semaphore.acquire()
                self._queued.discard(identity)
                self._in_flight.add(identity)
                task = asyncio.create_task(self._process(identity))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        except asyncio.CancelledError:
            logger.debug("ReconcileWorker dispatch loop cancelled")
            raise

    async def _process(self, identity: ResourceIdentity) -> None:
        try:
            result = await self.reconcile(identity)
            self._failures.pop(identity, None)
            if result.requeue_after is not None:
                self.enqueue_after(identity, result.requeue_after)
        except asyncio.CancelledError:
            raise
        except PauseKeeperError as e:
            if not e.recoverable:
                # Retrying cannot help; wait for the resource to change or the next resync
                self._failures.pop(identity, None)
                logger.error(f"Evaluation of {identity} failed and needs attention: {e.to_dict()}")
                return
            delay = self._next_backoff(identity)
            logger.warning(f"Evaluation of {identity} failed, retrying in {delay.total_seconds():.1f}s: {e}")
            self.enqueue_after(identity, delay)
        except Exception as e:
            delay = self._next_backoff(identity)
            logger.error(
                f"Unexpected error evaluating {identity}, retrying in {delay.total_seconds():.1f}s: {e}",
                exc_info=True
            )
            self.enqueue_after(identity, delay)
        finally:
            self._in_flight.discard(identity)
            self._semaphore.release()
            if identity in self._dirty:
                self._dirty.discard(identity)
                if self._running:
                    self.enqueue(identity)

    def _next_backoff(self, identity: ResourceIdentity) -> timedelta:
        failures = self._failures.get(identity, 0) + 1
        self._failures[identity] = failures
        exponent = min(failures - 1, 32)
        seconds = min(self.backoff_base_seconds * (2 ** exponent), self.backoff_max_seconds)
        return timedelta(seconds=seconds)
