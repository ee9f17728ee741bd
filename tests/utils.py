"""
Test utilities shared by unit and integration tests.

FACTORY SYSTEM OVERVIEW
======================

1. ResourceFactory - unstructured managed resource documents
2. PauseStateFactory - paused and unpaused PauseState instances
3. InMemoryResourceClient - ResourceClient fake with resourceVersion conflicts

USAGE PATTERNS
=============

    from tests.utils import ResourceFactory, InMemoryResourceClient

    resource = ResourceFactory.create_ready_resource(spec={"forProvider": {"cidrBlock": "10.0.1.0/24"}})
    client = InMemoryResourceClient([resource])
"""

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from pausekeeper.exceptions import ConflictError, ResourceNotFoundError
from pausekeeper.integrations.kubernetes.base import ResourceClient
from pausekeeper.models.constants import ANNOTATION_KEY_PAUSE_STATE, ANNOTATION_KEY_RECONCILIATION_PAUSED
from pausekeeper.models.pause_state import PauseState
from pausekeeper.models.resource import ManagedResource, ResourceIdentity, ResourceListing, WatchedResource
from pausekeeper.services.drift_detector import strip_owned_annotations
from pausekeeper.services.pause_state_codec import encode_pause_state

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

SUBNETS = WatchedResource(group="ec2.aws.crossplane.io", version="v1beta1", plural="subnets", kind="Subnet")


class ResourceFactory:
    """
    Factory for managed resource documents.

    Examples:
        resource = ResourceFactory.create_ready_resource()
        resource = ResourceFactory.create_resource(conditions=[("Ready", "False")])
    """

    @staticmethod
    def create_document(
        name: str = "subnet-a",
        namespace: Optional[str] = None,
        spec: Optional[Dict[str, Any]] = None,
        annotations: Optional[Dict[str, str]] = None,
        labels: Optional[Dict[str, str]] = None,
        conditions: Optional[List[tuple]] = None,
        resource_version: str = "1",
        deletion_timestamp: Optional[str] = None,
    ) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"name": name, "resourceVersion": resource_version}
        if namespace:
            metadata["namespace"] = namespace
        if annotations is not None:
            metadata["annotations"] = dict(annotations)
        if labels is not None:
            metadata["labels"] = dict(labels)
        if deletion_timestamp:
            metadata["deletionTimestamp"] = deletion_timestamp

        document: Dict[str, Any] = {
            "apiVersion": "ec2.aws.crossplane.io/v1beta1",
            "kind": "Subnet",
            "metadata": metadata,
            "spec": spec if spec is not None else {"forProvider": {"cidrBlock": "10.0.0.0/24"}},
        }
        if conditions is not None:
            document["status"] = {
                "conditions": [
                    {"type": condition_type, "status": condition_status, "reason": "Test"}
                    for condition_type, condition_status in conditions
                ]
            }
        return document

    @staticmethod
    def create_resource(**overrides) -> ManagedResource:
        """Create a resource; conditions default to none."""
        return ManagedResource(ResourceFactory.create_document(**overrides))

    @staticmethod
    def create_ready_resource(**overrides) -> ManagedResource:
        """Create a resource that is Ready and Synced."""
        overrides.setdefault("conditions", [("Ready", "True"), ("Synced", "True")])
        return ResourceFactory.create_resource(**overrides)

    @staticmethod
    def create_paused_resource(
        pause_time: datetime = T0,
        scheduled_unpause_time: Optional[datetime] = None,
        **overrides
    ) -> ManagedResource:
        """
        Create a resource as it looks right after this system paused it.

        The snapshot matches the resource, so no drift is detected.
        """
        resource = ResourceFactory.create_ready_resource(**overrides)
        state = PauseState(
            paused=True,
            snapshot=strip_owned_annotations(resource.to_dict()),
            last_pause_time=pause_time,
            scheduled_unpause_time=scheduled_unpause_time,
        )
        annotations = resource.get_annotations()
        annotations[ANNOTATION_KEY_RECONCILIATION_PAUSED] = "true"
        annotations[ANNOTATION_KEY_PAUSE_STATE] = encode_pause_state(state)
        resource.set_annotations(annotations)
        return resource

    @staticmethod
    def identity_of(resource: ManagedResource, watched: WatchedResource = SUBNETS) -> ResourceIdentity:
        return watched.identity(resource.name, resource.namespace)


class PauseStateFactory:
    """Factory for PauseState instances."""

    @staticmethod
    def create_paused(resource: Optional[ManagedResource] = None, **overrides) -> PauseState:
        resource = resource or ResourceFactory.create_ready_resource()
        base_data: Dict[str, Any] = {
            "paused": True,
            "snapshot": strip_owned_annotations(resource.to_dict()),
            "last_pause_time": T0,
        }
        base_data.update(overrides)
        return PauseState(**base_data)

    @staticmethod
    def create_unpaused(**overrides) -> PauseState:
        base_data: Dict[str, Any] = {
            "paused": False,
            "last_pause_time": T0 - timedelta(hours=1),
            "last_unpause_time": T0,
        }
        base_data.update(overrides)
        return PauseState(**base_data)


class InMemoryResourceClient(ResourceClient):
    """
    ResourceClient backed by a dict, with API server update semantics.

    update() rejects a stale metadata.resourceVersion with ConflictError and
    bumps the version on success. modify() records a watch event. Tests can
    inject a concurrent writer with on_before_update, or raise from get/update
    by setting get_error/update_error.
    """

    def __init__(self, resources: Optional[List[ManagedResource]] = None, watched: WatchedResource = SUBNETS):
        self.watched = watched
        self.objects: Dict[ResourceIdentity, Dict[str, Any]] = {}
        self.get_calls = 0
        self.update_calls = 0
        self.get_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.on_before_update = None
        self.events: List[ResourceIdentity] = []
        self._version = 100
        for resource in resources or []:
            self.put(resource)

    def put(self, resource: ManagedResource) -> ResourceIdentity:
        """Store a resource as-is and return its identity."""
        identity = ResourceFactory.identity_of(resource, self.watched)
        self.objects[identity] = copy.deepcopy(resource.to_dict())
        return identity

    def modify(self, identity: ResourceIdentity, mutate) -> None:
        """Apply an out-of-band change, bumping the resourceVersion."""
        document = self.objects[identity]
        mutate(document)
        document["metadata"]["resourceVersion"] = self._next_version()
        self.events.append(identity)

    def stored(self, identity: ResourceIdentity) -> ManagedResource:
        return ManagedResource(copy.deepcopy(self.objects[identity]))

    async def get(self, identity: ResourceIdentity) -> ManagedResource:
        self.get_calls += 1
        if self.get_error is not None:
            raise self.get_error
        if identity not in self.objects:
            raise ResourceNotFoundError(f"{identity} not found")
        return self.stored(identity)

    async def update(self, identity: ResourceIdentity, resource: ManagedResource) -> ManagedResource:
        self.update_calls += 1
        if self.on_before_update is not None:
            self.on_before_update(self, identity)
        if self.update_error is not None:
            raise self.update_error
        if identity not in self.objects:
            raise ResourceNotFoundError(f"{identity} not found")

        current = self.objects[identity]
        if resource.resource_version != current["metadata"].get("resourceVersion"):
            raise ConflictError(f"{identity} was modified concurrently")

        document = copy.deepcopy(resource.to_dict())
        document["metadata"]["resourceVersion"] = self._next_version()
        self.objects[identity] = document
        self.events.append(identity)
        return ManagedResource(copy.deepcopy(document))

    async def list(self, watched: WatchedResource) -> ResourceListing:
        return ResourceListing(identities=list(self.objects), resource_version=str(self._version))

    async def watch(
        self,
        watched: WatchedResource,
        resource_version: Optional[str] = None,
        timeout_seconds: Optional[float] = None
    ) -> AsyncIterator[ResourceIdentity]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (timeout_seconds if timeout_seconds is not None else 3600)
        while loop.time() < deadline:
            while self.events:
                yield self.events.pop(0)
            await asyncio.sleep(0.01)

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)
