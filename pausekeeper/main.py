"""
pausekeeper - FastAPI Application
Main entry point for the pausekeeper controller.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Response, status

from pausekeeper import __version__
from pausekeeper.config.settings import get_settings
from pausekeeper.integrations.kubernetes import KubernetesResourceClient, ResourceClient
from pausekeeper.models.resource import ResourceIdentity, WatchedResource
from pausekeeper.services.decision_engine import DecisionEngine
from pausekeeper.services.pause_reconciler import PauseReconciler
from pausekeeper.services.reconcile_worker import ReconcileWorker
from pausekeeper.services.resource_watcher import ResourceWatcher
from pausekeeper.utils.logger import get_module_logger, setup_logging

# Setup logger for this module
logger = get_module_logger(__name__)

resource_client: Optional[ResourceClient] = None
reconcile_worker: Optional[ReconcileWorker] = None
resource_watcher: Optional[ResourceWatcher] = None
watched_resources: List[WatchedResource] = []


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    global resource_client, reconcile_worker, resource_watcher, watched_resources

    settings = get_settings()
    setup_logging(settings.log_level)

    # Configuration errors are fatal; let them abort startup
    watched_resources = settings.load_watched_resources()
    policy = settings.pause_policy()
    logger.info(
        f"Pause policy: frozen window {policy.frozen_duration.total_seconds():.0f}s, "
        f"unpause poll interval "
        f"{policy.unpause_poll_interval.total_seconds() if policy.unpause_poll_interval else 'disabled'}"
    )

    resource_client = KubernetesResourceClient(settings.kube_client_config())
    reconciler = PauseReconciler(
        resource_client,
        DecisionEngine(policy),
        max_conflict_retries=settings.max_conflict_retries,
    )
    reconcile_worker = ReconcileWorker(
        reconciler.evaluate,
        max_concurrent=settings.max_concurrent_reconciles,
        backoff_base_seconds=settings.error_backoff_base_seconds,
        backoff_max_seconds=settings.error_backoff_max_seconds,
    )
    resource_watcher = ResourceWatcher(
        resource_client,
        watched_resources,
        reconcile_worker.enqueue,
        resync_interval_seconds=settings.resync_interval_seconds,
        error_backoff_seconds=settings.error_backoff_base_seconds,
    )

    await reconcile_worker.start()
    await resource_watcher.start()
    logger.info(f"pausekeeper {__version__} started, managing {len(watched_resources)} resource kind(s)")

    yield

    logger.info("pausekeeper shutting down...")

    try:
        await resource_watcher.stop()
    except Exception as e:
        logger.error(f"Error stopping resource watcher: {e}", exc_info=True)

    try:
        await reconcile_worker.stop()
    except Exception as e:
        logger.error(f"Error stopping reconcile worker: {e}", exc_info=True)

    await resource_client.close()
    logger.info("pausekeeper shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="pausekeeper",
    description="Pauses reconciliation of settled managed resources and unpauses them on change",
    version=__version__,
    lifespan=lifespan
)


@app.get("/health")
async def health_check(response: Response) -> Dict[str, Any]:
    """
    Health check endpoint for Kubernetes probes.

    Returns:
        - HTTP 200: Worker and watcher running
        - HTTP 503: Either of them stopped
    """
    worker_running = reconcile_worker is not None and reconcile_worker.running
    watcher_running = resource_watcher is not None and resource_watcher.running

    health_status: Dict[str, Any] = {
        "status": "healthy" if worker_running and watcher_running else "degraded",
        "service": "pausekeeper",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "services": {
            "reconcile_worker": {
                "running": worker_running,
                **(reconcile_worker.stats() if reconcile_worker is not None else {}),
            },
            "resource_watcher": {
                "running": watcher_running,
                "watched_kinds": len(watched_resources),
            },
        },
    }

    if health_status["status"] != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return health_status


@app.post("/api/v1/evaluate", status_code=status.HTTP_202_ACCEPTED)
async def evaluate_resource(identity: ResourceIdentity) -> Dict[str, Any]:
    """
    Queue one resource for immediate evaluation.

    The evaluation itself runs on the reconcile worker, so it never
    overlaps another evaluation of the same resource.
    """
    if reconcile_worker is None or not reconcile_worker.running:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Reconcile worker not running")

    if not any(_is_instance_of(identity, watched) for watched in watched_resources):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{identity.group}/{identity.version}/{identity.plural} is not a watched resource kind"
        )

    reconcile_worker.enqueue(identity)
    logger.info(f"Evaluation of {identity} requested via API")
    return {"queued": True, "identity": identity.key}


def _is_instance_of(identity: ResourceIdentity, watched: WatchedResource) -> bool:
    if (identity.group, identity.version, identity.plural) != (watched.group, watched.version, watched.plural):
        return False
    return watched.namespace is None or watched.namespace == identity.namespace


def main() -> None:
    """Run the controller with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "pausekeeper.main:app",
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
