"""
Abstract client interface for fetching and updating managed resources.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from pausekeeper.models.resource import ManagedResource, ResourceIdentity, ResourceListing, WatchedResource


class ResourceClient(ABC):
    """
    Minimal read/update/watch access to managed resources.
    
    Implementations raise ResourceNotFoundError, ConflictError and
    TransientAccessError from pausekeeper.exceptions; nothing else.
    """
    
    @abstractmethod
    async def get(self, identity: ResourceIdentity) -> ManagedResource:
        """Fetch the current document of one resource."""
        pass
    
    @abstractmethod
    async def update(self, identity: ResourceIdentity, resource: ManagedResource) -> ManagedResource:
        """
        Replace a resource, conditional on its metadata.resourceVersion.
        
        Raises:
            ConflictError: If the stored resourceVersion differs
        """
        pass
    
    @abstractmethod
    async def list(self, watched: WatchedResource) -> ResourceListing:
        """List the identities of every instance of a watched kind."""
        pass
    
    @abstractmethod
    def watch(
        self,
        watched: WatchedResource,
        resource_version: Optional[str] = None,
        timeout_seconds: Optional[float] = None
    ) -> AsyncIterator[ResourceIdentity]:
        """
        Yield the identity of every instance that changes after resource_version.
        
        The iterator ends when the server closes the watch (after
        timeout_seconds). An expired resource_version raises
        TransientAccessError with status_code 410; list again and restart.
        """
        pass
    
    async def close(self) -> None:
        """Release any connections held by the client."""
        return None
