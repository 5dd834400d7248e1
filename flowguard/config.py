"""Configuration utilities for the workflow orchestration service."""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

SERVICE_VERSION = "0.1.0"


class FlowguardSettings(BaseSettings):
    """Settings for the remote engine connection and deployment behaviour.

    Everything is environment supplied (``FLOWGUARD_`` prefix). The engine's own
    database and encryption parameters are carried opaquely so they can be
    handed to the engine's container; nothing in this package reads them.
    """

    model_config = SettingsConfigDict(
        env_prefix="FLOWGUARD_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_name: str = "flowguard"
    environment: str = "development"

    # Remote engine
    base_url: str = "http://localhost:5678"
    webhook_url: str = "http://localhost:5678"
    basic_auth_user: str = "admin"
    basic_auth_password: str = "admin"
    request_timeout: float = 30.0
    read_retry_attempts: int = 3

    # Engine persistence (opaque)
    db_host: str = "postgres"
    db_port: int = 5432
    db_database: str = "clinic_db"
    db_username: str = "clinic_user"
    db_password: str = ""
    encryption_key: str = ""

    timezone: str = "America/Sao_Paulo"
    max_executions: int = 10000
    retention_days: int = 90

    # Deployment
    smoke_test_grace_seconds: float = 5.0
    smoke_test_limit: int = 3
    webhook_node_type: str = "n8n-nodes-base.webhook"
    monitoring_workflow: str = "system-monitoring"
    metrics_workflow: str = "business-metrics"
    required_active_workflows: List[str] = [
        "appointment-booking",
        "reminder-system",
        "system-monitoring",
    ]

    # Recovery
    alert_workflow: str = "error-alert-notification"
    critical_workflows: List[str] = [
        "appointment-booking",
        "appointment-rescheduling",
        "payment-processing",
    ]


@lru_cache
def get_settings() -> FlowguardSettings:
    """Return cached FlowguardSettings to avoid repeated environment parsing."""

    return FlowguardSettings()
