"""Deployment and recovery of workflows on the remote engine."""

from .deployment import DeploymentAborted, DeploymentManager
from .orchestrator import DeploymentOrchestrator
from .recovery import (
    AlertChannel,
    ErrorClassifier,
    LogAlertChannel,
    RecoveryEngine,
    ReportedFailure,
    WorkflowAlertChannel,
    compute_retry_delay,
)

__all__ = [
    "AlertChannel",
    "DeploymentAborted",
    "DeploymentManager",
    "DeploymentOrchestrator",
    "ErrorClassifier",
    "LogAlertChannel",
    "RecoveryEngine",
    "ReportedFailure",
    "WorkflowAlertChannel",
    "compute_retry_delay",
]
