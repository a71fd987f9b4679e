"""Configuration management for the RobustMQ operator."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Operator settings, read from the environment (prefix ``ROBUSTMQ_OPERATOR_``)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ROBUSTMQ_OPERATOR_",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Settings
    service_name: str = "robustmq-operator"
    version: str = "0.1.0"
    log_level: str = "INFO"

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file; in-cluster config is used when unset",
    )
    kubeconfig_data: Optional[str] = Field(
        default=None,
        description="Base64 encoded kubeconfig, used instead of kubeconfig_path when set",
    )
    kube_context: Optional[str] = None
    watch_namespace: Optional[str] = Field(
        default=None,
        description="Namespace to watch; all namespaces when unset",
    )

    # Reconciliation Settings
    requeue_after_seconds: float = 300
    error_backoff_base_seconds: float = 5
    error_backoff_max_seconds: float = 300
    max_concurrent_reconciles: int = 4
    watch_timeout_seconds: int = 300
    prune_orphans: bool = Field(
        default=False,
        description="Delete resources left behind by a previous topology",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
