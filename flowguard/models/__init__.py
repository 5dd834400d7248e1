"""Data models package."""

from .deployment import (
    CatalogValidation,
    DeploymentConfig,
    DeploymentError,
    DeploymentResult,
    DeploymentStatus,
    DeploymentValidation,
    HealthReport,
    WorkflowHealth,
    WorkflowHealthStatus,
)
from .errors import (
    ErrorHandlingResult,
    ErrorPolicy,
    ErrorReport,
    ErrorStatistics,
    ErrorType,
    RecoveryAction,
    RecoveryActionType,
    WorkflowError,
)
from .webhook import WebhookDispatch, WebhookResponse
from .workflow import (
    ConnectionTarget,
    PolicyCategory,
    TemplateCategory,
    TemplatePriority,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowNode,
    WorkflowSettings,
    WorkflowTemplate,
)

__all__ = [
    "CatalogValidation",
    "ConnectionTarget",
    "DeploymentConfig",
    "DeploymentError",
    "DeploymentResult",
    "DeploymentStatus",
    "DeploymentValidation",
    "ErrorHandlingResult",
    "ErrorPolicy",
    "ErrorReport",
    "ErrorStatistics",
    "ErrorType",
    "HealthReport",
    "PolicyCategory",
    "RecoveryAction",
    "RecoveryActionType",
    "TemplateCategory",
    "TemplatePriority",
    "WebhookDispatch",
    "WebhookResponse",
    "WorkflowDefinition",
    "WorkflowError",
    "WorkflowExecution",
    "WorkflowHealth",
    "WorkflowHealthStatus",
    "WorkflowNode",
    "WorkflowSettings",
    "WorkflowTemplate",
]
