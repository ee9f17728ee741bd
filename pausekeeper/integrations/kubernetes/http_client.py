"""
Kubernetes REST client for arbitrary custom resources, built on httpx.

Only what the controller needs is implemented: get, update (PUT, which
the API server rejects with 409 when the resourceVersion is stale), a
paginated list and a watch stream.
"""

import json
import os
import ssl
from typing import Any, AsyncIterator, Dict, Generator, Optional, Union

import httpx

from pausekeeper.exceptions import ConflictError, ResourceNotFoundError, TransientAccessError
from pausekeeper.integrations.kubernetes.base import ResourceClient
from pausekeeper.models.kube_config import KubeClientConfig
from pausekeeper.models.resource import ManagedResource, ResourceIdentity, ResourceListing, WatchedResource
from pausekeeper.utils.logger import get_module_logger

logger = get_module_logger(__name__)

LIST_PAGE_SIZE = 500


class BearerTokenAuth(httpx.Auth):
    """
    Bearer token auth for the API server.

    A token file is stat'ed per request and only re-read when its mtime
    changes, which picks up kubelet rotation of projected tokens.
    """

    def __init__(self, token: Optional[str] = None, token_path: Optional[str] = None):
        self.token = token
        self.token_path = token_path
        self._cached_token: Optional[str] = None
        self._cached_mtime_ns: Optional[int] = None

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        token = self._current_token()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        yield request

    def _current_token(self) -> Optional[str]:
        if self.token:
            return self.token
        if not self.token_path:
            return None

        try:
            mtime_ns = os.stat(self.token_path).st_mtime_ns
        except FileNotFoundError:
            self._cached_token = None
            self._cached_mtime_ns = None
            return None

        if mtime_ns != self._cached_mtime_ns:
            with open(self.token_path, encoding="utf-8") as f:
                self._cached_token = f.read().strip()
            self._cached_mtime_ns = mtime_ns
        return self._cached_token


class KubernetesResourceClient(ResourceClient):
    """ResourceClient talking to the Kubernetes API server over HTTPS."""

    def __init__(self, config: KubeClientConfig, http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the client.

        Args:
            config: API server location and credentials
            http_client: Pre-built client (tests inject one with a MockTransport)
        """
        self.config = config
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            base_url=config.api_server,
            auth=BearerTokenAuth(config.token, config.token_path),
            verify=self._build_verify(config),
            timeout=config.timeout_seconds,
            headers={"Accept": "application/json", "User-Agent": "pausekeeper/0.1"},
        )

        if not config.verify_ssl:
            logger.warning(
                f"SSL verification disabled for API server {config.api_server}. "
                "This is insecure and should only be used in development."
            )

    @staticmethod
    def _build_verify(config: KubeClientConfig) -> Union[bool, ssl.SSLContext]:
        if not config.verify_ssl:
            return False
        if config.ca_path and os.path.exists(config.ca_path):
            return ssl.create_default_context(cafile=config.ca_path)
        return True

    @staticmethod
    def collection_path(group: str, version: str, plural: str, namespace: Optional[str]) -> str:
        """REST path of a resource collection."""
        prefix = f"/apis/{group}/{version}" if group else f"/api/{version}"
        if namespace:
            return f"{prefix}/namespaces/{namespace}/{plural}"
        return f"{prefix}/{plural}"

    def resource_path(self, identity: ResourceIdentity) -> str:
        """REST path of a single resource."""
        base = self.collection_path(identity.group, identity.version, identity.plural, identity.namespace)
        return f"{base}/{identity.name}"

    async def get(self, identity: ResourceIdentity) -> ManagedResource:
        response = await self._request("GET", self.resource_path(identity), identity.key)
        return ManagedResource(response.json())

    async def update(self, identity: ResourceIdentity, resource: ManagedResource) -> ManagedResource:
        response = await self._request(
            "PUT", self.resource_path(identity), identity.key, json=resource.to_dict()
        )
        return ManagedResource(response.json())

    async def list(self, watched: WatchedResource) -> ResourceListing:
        path = self.collection_path(watched.group, watched.version, watched.plural, watched.namespace)
        listing = ResourceListing()
        continue_token: Optional[str] = None

        while True:
            params: Dict[str, Any] = {"limit": LIST_PAGE_SIZE}
            if continue_token:
                params["continue"] = continue_token

            response = await self._request("GET", path, path, params=params)
            body = response.json()
            for item in body.get("items") or []:
                listing.identities.append(self._identity_of(watched, item))

            list_metadata = body.get("metadata") or {}
            listing.resource_version = list_metadata.get("resourceVersion")
            continue_token = list_metadata.get("continue")
            if not continue_token:
                return listing

    async def watch(
        self,
        watched: WatchedResource,
        resource_version: Optional[str] = None,
        timeout_seconds: Optional[float] = None
    ) -> AsyncIterator[ResourceIdentity]:
        path = self.collection_path(watched.group, watched.version, watched.plural, watched.namespace)
        context = {"method": "GET", "path": path, "target": path, "watch": True}
        params: Dict[str, Any] = {"watch": "true", "allowWatchBookmarks": "true"}
        if resource_version:
            params["resourceVersion"] = resource_version
        read_timeout: Optional[float] = None
        if timeout_seconds is not None:
            params["timeoutSeconds"] = int(timeout_seconds)
            # Leave the server room to close the stream itself
            read_timeout = timeout_seconds + self.config.timeout_seconds
        timeout = httpx.Timeout(self.config.timeout_seconds, read=read_timeout)

        try:
            async with self.client.stream("GET", path, params=params, timeout=timeout) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._raise_for_status(response, "GET", path, path)

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    event = json.loads(line)
                    event_type = event.get("type")
                    obj = event.get("object") or {}

                    if event_type == "BOOKMARK":
                        continue
                    if event_type == "ERROR":
                        # obj is a metav1.Status; 410 means resource_version expired
                        raise TransientAccessError(
                            f"Watch on {path} failed: {obj.get('message', 'unknown error')}",
                            status_code=obj.get("code"),
                            context=context,
                        )
                    yield self._identity_of(watched, obj)
        except httpx.HTTPError as e:
            raise TransientAccessError(
                f"Watch on {path} failed: {type(e).__name__}: {e}", context=context
            ) from e
        except json.JSONDecodeError as e:
            raise TransientAccessError(f"Watch on {path} sent an undecodable event: {e}", context=context) from e

    @staticmethod
    def _identity_of(watched: WatchedResource, obj: Dict[str, Any]) -> ResourceIdentity:
        metadata = obj.get("metadata") or {}
        return watched.identity(metadata["name"], metadata.get("namespace"))

    async def _request(self, method: str, path: str, target: str, **kwargs: Any) -> httpx.Response:
        """Send a request and translate failures into pausekeeper exceptions."""
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransientAccessError(
                f"{method} {path} failed: {type(e).__name__}: {e}",
                context={"method": method, "path": path, "target": target},
            ) from e

        self._raise_for_status(response, method, path, target)
        return response

    def _raise_for_status(self, response: httpx.Response, method: str, path: str, target: str) -> None:
        context = {"method": method, "path": path, "target": target}
        if response.status_code == 404:
            raise ResourceNotFoundError(f"{target} not found", context=context)
        if response.status_code == 409:
            raise ConflictError(f"{target} was modified concurrently: {self._status_message(response)}",
                                context=context)
        if response.status_code >= 400:
            raise TransientAccessError(
                f"{method} {path} returned {response.status_code}: {self._status_message(response)}",
                status_code=response.status_code,
                context=context,
            )

    @staticmethod
    def _status_message(response: httpx.Response) -> str:
        # The API server answers errors with a metav1.Status document.
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict) and body.get("message"):
            return body["message"]
        return response.text

    async def close(self) -> None:
        """Close the HTTP client only if we own it."""
        if self._owns_client:
            await self.client.aclose()
