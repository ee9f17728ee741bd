"""
Application settings and configuration management.
"""

import os
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pausekeeper.config.exceptions import ConfigurationError
from pausekeeper.models.constants import (
    ANNOTATION_KEY_PAUSE_STATE,
    ANNOTATION_KEY_RECONCILIATION_PAUSED,
    DEFAULT_FROZEN_DURATION,
    DEFAULT_MAX_CONCURRENT_RECONCILES,
    DEFAULT_MAX_CONFLICT_RETRIES,
)
from pausekeeper.models.kube_config import IN_CLUSTER_CA_PATH, IN_CLUSTER_TOKEN_PATH, KubeClientConfig
from pausekeeper.models.resource import WatchedResource
from pausekeeper.services.decision_engine import PausePolicy
from pausekeeper.utils.logger import get_module_logger

logger = get_module_logger(__name__)


class Settings(BaseSettings):
    """Application settings."""

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    log_level: str = Field(default="INFO")

    # Pause Policy Configuration
    frozen_duration_seconds: float = Field(
        default=DEFAULT_FROZEN_DURATION.total_seconds(),
        description="Minimum time a resource stays unpaused before it may be paused again"
    )
    unpause_poll_interval_seconds: Optional[float] = Field(
        default=None,
        description="Force an unpause after a resource has been paused this long (jittered by up to 10%). "
        "Unset disables forced unpause."
    )
    pause_annotation_key: str = Field(default=ANNOTATION_KEY_RECONCILIATION_PAUSED)
    pause_state_annotation_key: str = Field(default=ANNOTATION_KEY_PAUSE_STATE)

    # Concurrency Control Configuration
    max_concurrent_reconciles: int = Field(
        default=DEFAULT_MAX_CONCURRENT_RECONCILES,
        description="Maximum number of resources evaluated at the same time"
    )
    max_conflict_retries: int = Field(
        default=DEFAULT_MAX_CONFLICT_RETRIES,
        description="Attempts per evaluation when updates hit a resourceVersion conflict"
    )
    error_backoff_base_seconds: float = Field(
        default=1.0,
        description="First retry delay after a recoverable evaluation error; doubles per failure"
    )
    error_backoff_max_seconds: float = Field(
        default=300.0,
        description="Upper bound of the retry delay after evaluation errors"
    )
    resync_interval_seconds: float = Field(
        default=600.0,
        description="How often every watched resource is listed and re-evaluated"
    )

    # Watched Resources Configuration File Path
    watched_resources_path: str = Field(
        default="config/watched_resources.yaml",
        description="YAML file listing the resource kinds to manage"
    )

    # Kubernetes API Configuration
    kube_api_server: str = Field(
        default="",
        description="API server URL; defaults to the in-cluster service address"
    )
    kube_token: Optional[str] = Field(default=None)
    kube_token_path: Optional[str] = Field(default=IN_CLUSTER_TOKEN_PATH)
    kube_ca_path: Optional[str] = Field(default=IN_CLUSTER_CA_PATH)
    kube_verify_ssl: bool = Field(default=True)
    kube_request_timeout_seconds: float = Field(default=30.0)

    @field_validator('frozen_duration_seconds', mode='after')
    @classmethod
    def validate_frozen_duration(cls, v: float) -> float:
        if v < 0:
            raise ValueError("frozen_duration_seconds must not be negative")
        return v

    @field_validator('unpause_poll_interval_seconds', mode='after')
    @classmethod
    def validate_poll_interval(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("unpause_poll_interval_seconds must be positive")
        return v

    @field_validator('max_concurrent_reconciles', 'max_conflict_retries', mode='after')
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator('error_backoff_base_seconds', 'error_backoff_max_seconds', 'resync_interval_seconds',
                     'kube_request_timeout_seconds', mode='after')
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator('kube_token', mode='after')
    @classmethod
    def strip_token(cls, v: Optional[str]) -> Optional[str]:
        """Strip whitespace picked up from env files and secrets."""
        return v.strip() if v else v

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.kube_api_server:
            host = os.environ.get("KUBERNETES_SERVICE_HOST")
            port = os.environ.get("KUBERNETES_SERVICE_PORT", "443")
            if host:
                # IPv6 service hosts must be bracketed in URLs
                if ":" in host:
                    host = f"[{host}]"
                self.kube_api_server = f"https://{host}:{port}"
            else:
                self.kube_api_server = "https://kubernetes.default.svc"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def pause_policy(self) -> PausePolicy:
        """Build the decision engine policy from these settings."""
        return PausePolicy(
            frozen_duration=timedelta(seconds=self.frozen_duration_seconds),
            unpause_poll_interval=(
                timedelta(seconds=self.unpause_poll_interval_seconds)
                if self.unpause_poll_interval_seconds is not None else None
            ),
            pause_annotation_key=self.pause_annotation_key,
            pause_state_annotation_key=self.pause_state_annotation_key,
        )

    def kube_client_config(self) -> KubeClientConfig:
        """Build the API server connection settings."""
        return KubeClientConfig(
            api_server=self.kube_api_server,
            token=self.kube_token,
            token_path=self.kube_token_path,
            ca_path=self.kube_ca_path,
            verify_ssl=self.kube_verify_ssl,
            timeout_seconds=self.kube_request_timeout_seconds,
        )

    def load_watched_resources(self) -> List[WatchedResource]:
        """
        Load the watched resource kinds from YAML.

        A missing or empty file yields an empty list. A file that exists
        must be valid; errors fail fast.

        Raises:
            ConfigurationError: If the file cannot be parsed or validated
        """
        config_path = Path(self.watched_resources_path)

        if not config_path.exists():
            logger.warning(f"Watched resources file not found at {config_path}; nothing will be managed")
            return []

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.critical(f"Failed to read watched resources from {config_path}: {e}")
            raise ConfigurationError(f"Failed to read watched resources from {config_path}: {e}") from e

        if not yaml_config:
            logger.warning(f"Watched resources file is empty: {config_path}")
            return []

        if not isinstance(yaml_config, dict) or 'resources' not in yaml_config:
            raise ConfigurationError(f"Invalid watched resources config: missing 'resources' section in {config_path}")

        entries = yaml_config['resources'] or []
        if not isinstance(entries, list):
            raise ConfigurationError(f"Invalid watched resources config: 'resources' must be a list in {config_path}")

        watched: List[WatchedResource] = []
        validation_errors = []
        for index, entry in enumerate(entries):
            try:
                watched.append(WatchedResource.model_validate(entry))
            except ValidationError as e:
                validation_errors.append(f"Entry {index}: {e}")

        if validation_errors:
            error_msg = "\n  - ".join(validation_errors)
            logger.critical(f"Watched resources validation errors in {config_path}:\n  - {error_msg}")
            raise ConfigurationError(f"Invalid watched resources in {config_path}. Errors:\n  - {error_msg}")

        logger.info(f"Loaded {len(watched)} watched resource kind(s) from {config_path}")
        return watched


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
