"""Background service feeding resource changes into the reconcile worker."""

import asyncio
from typing import Callable, Dict, List, Optional

from pausekeeper.exceptions import TransientAccessError
from pausekeeper.integrations.kubernetes.base import ResourceClient
from pausekeeper.models.resource import ResourceIdentity, WatchedResource
from pausekeeper.utils.logger import get_module_logger

logger = get_module_logger(__name__)

HTTP_GONE = 410


class ResourceWatcher:
    """
    Lists and watches every watched resource kind.

    One loop per kind:
    1. List all instances and enqueue each of them (full resync)
    2. Watch from the list's resourceVersion, enqueueing every changed instance
    3. When the server closes the watch after resync_interval_seconds, or
       the resourceVersion expires, go back to 1

    Errors back off for error_backoff_seconds before listing again.
    """

    def __init__(
        self,
        client: ResourceClient,
        watched: List[WatchedResource],
        enqueue: Callable[[ResourceIdentity], None],
        resync_interval_seconds: float = 600.0,
        error_backoff_seconds: float = 5.0,
    ):
        """
        Initialize resource watcher.

        Args:
            client: API access used for list and watch calls
            watched: Resource kinds to follow
            enqueue: Called with every identity that needs evaluation
            resync_interval_seconds: Watch duration before a full relist
            error_backoff_seconds: Pause after a failed list or watch
        """
        self.client = client
        self.watched = watched
        self.enqueue = enqueue
        self.resync_interval_seconds = resync_interval_seconds
        self.error_backoff_seconds = error_backoff_seconds

        self.tasks: Dict[WatchedResource, asyncio.Task] = {}
        self.running = False

    async def start(self) -> None:
        """Start one background loop per watched kind."""
        if self.running:
            logger.warning("Resource watcher already running; ignoring start()")
            return

        self.running = True
        for watched in self.watched:
            self.tasks[watched] = asyncio.create_task(self._watch_loop(watched))

        logger.info(
            f"Resource watcher started for {len(self.watched)} kind(s) "
            f"(resync every {self.resync_interval_seconds:.0f}s)"
        )

    async def stop(self) -> None:
        """Stop all loops."""
        self.running = False

        for task in self.tasks.values():
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks.values(), return_exceptions=True)
        self.tasks.clear()

        logger.info("Resource watcher stopped")

    async def _watch_loop(self, watched: WatchedResource) -> None:
        kind = watched.kind or watched.plural
        while self.running:
            try:
                resource_version = await self.resync(watched)

                async for identity in self.client.watch(
                    watched, resource_version, timeout_seconds=self.resync_interval_seconds
                ):
                    self.enqueue(identity)

                logger.debug(f"Watch on {kind} closed by the server, resyncing")

            except asyncio.CancelledError:
                break
            except TransientAccessError as e:
                if e.status_code == HTTP_GONE:
                    logger.info(f"Watch on {kind} expired, relisting")
                    continue
                logger.warning(f"Watch on {kind} failed, retrying in {self.error_backoff_seconds}s: {e}")
                await asyncio.sleep(self.error_backoff_seconds)
            except Exception as e:
                logger.error(f"Error watching {kind}: {e}", exc_info=True)
                await asyncio.sleep(self.error_backoff_seconds)

    async def resync(self, watched: WatchedResource) -> Optional[str]:
        """
        Enqueue every instance of a kind.

        Returns:
            The list resourceVersion to watch from
        """
        listing = await self.client.list(watched)
        for identity in listing.identities:
            self.enqueue(identity)

        logger.info(f"Resynced {len(listing.identities)} {watched.kind or watched.plural} resource(s)")
        return listing.resource_version
