"""Configuration management for the Athenz to Istio authorization controller."""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """
    Controller settings.

    Every field is read from the environment variable of the same name,
    upper-cased (ex: ``poll_interval`` from ``POLL_INTERVAL``).
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    # Application
    app_name: str = "athenz-istio-auth"
    app_version: str = "0.1.0"

    # Reconciliation
    poll_interval: float = 60.0  # seconds
    dns_suffix: str = "svc.cluster.local"
    queue_num_retries: int = 3
    queue_base_delay: float = 0.005
    queue_max_delay: float = 1000.0

    # Onboarding
    authz_enabled_annotation: str = "authz.istio.io/enabled"

    # Istio RBAC custom resources
    istio_rbac_group: str = "rbac.istio.io"
    istio_rbac_version: str = "v1alpha1"

    # AthenzDomain custom resources
    athenz_domain_group: str = "athenz.io"
    athenz_domain_version: str = "v1"
    athenz_domain_plural: str = "athenzdomains"

    # Kubernetes
    kubeconfig: Optional[str] = None
    liveness_endpoint: str = "http://0.0.0.0:8080/healthz"

    # Logging
    log_level: LogLevel = LogLevel.INFO
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_json: bool = False

    # Metrics
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @field_validator("dns_suffix", mode="before")
    @classmethod
    def strip_dns_suffix(cls, v):
        """Drop surrounding dots so service names never contain '..'."""
        if isinstance(v, str):
            return v.strip().strip(".")
        return v

    @field_validator("poll_interval", "queue_base_delay", "queue_max_delay")
    @classmethod
    def positive_duration(cls, v):
        """Durations must be positive."""
        if v <= 0:
            raise ValueError("duration must be positive")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
