"""
Access to the API server holding the managed resources.
"""

from .base import ResourceClient
from .http_client import KubernetesResourceClient

__all__ = ["ResourceClient", "KubernetesResourceClient"]
