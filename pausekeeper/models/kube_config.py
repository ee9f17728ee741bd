"""
Connection settings for the Kubernetes API server.
"""

from typing import Optional

from pydantic import BaseModel, Field

IN_CLUSTER_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"
IN_CLUSTER_CA_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"


class KubeClientConfig(BaseModel):
    """How to reach and authenticate against the API server."""
    
    api_server: str = Field(description="Base URL of the API server, e.g. https://10.0.0.1:443")
    token: Optional[str] = Field(
        default=None,
        description="Static bearer token; takes precedence over token_path"
    )
    token_path: Optional[str] = Field(
        default=IN_CLUSTER_TOKEN_PATH,
        description="File holding a bearer token, re-read on every request so rotated tokens are picked up"
    )
    ca_path: Optional[str] = Field(
        default=IN_CLUSTER_CA_PATH,
        description="CA bundle used to verify the API server certificate"
    )
    verify_ssl: bool = Field(default=True)
    timeout_seconds: float = Field(default=30.0, gt=0)
