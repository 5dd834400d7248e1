"""Models describing execution failures and the recovery applied to them."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorType(str, Enum):
    """Classification of an execution failure."""

    TIMEOUT = "timeout"
    CONNECTION = "connection"
    VALIDATION = "validation"
    EXTERNAL_API = "external_api"
    UNKNOWN = "unknown"


class RecoveryActionType(str, Enum):
    RETRY = "retry"
    FALLBACK = "fallback"
    SKIP = "skip"
    RESTART = "restart"
    ALERT = "alert"


class ErrorPolicy(BaseModel):
    """Recovery policy for one category of workflows."""

    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)
    exponential_backoff: bool = True
    fallback_workflow_id: Optional[str] = None
    alert_threshold: int = Field(default=3, ge=0)
    auto_restart: bool = False


class WorkflowError(BaseModel):
    """One reported failure of a workflow execution."""

    workflow_id: str
    workflow_name: str
    execution_id: str
    node_id: str = "unknown"
    node_name: str = "unknown"
    message: str
    error_type: ErrorType = ErrorType.UNKNOWN
    timestamp: datetime = Field(default_factory=utcnow)
    retry_count: int = Field(default=0, ge=0)
    is_critical: bool = False
    context: Optional[Dict[str, Any]] = None


class RecoveryAction(BaseModel):
    """A recovery step chosen for a failure, and what happened when it ran."""

    type: RecoveryActionType
    description: str
    automated: bool = True
    executed: bool = False
    outcome: Optional[str] = None


class ErrorHandlingResult(BaseModel):
    """Outcome of handling one reported failure."""

    success: bool
    error: Optional[WorkflowError] = None
    recovery_actions: List[RecoveryAction] = Field(default_factory=list)
    escalated: bool = False


class ErrorStatistics(BaseModel):
    total_errors: int
    critical_errors: int
    recent_errors: int
    errors_by_type: Dict[str, int] = Field(default_factory=dict)
    errors_by_workflow: Dict[str, int] = Field(default_factory=dict)


class ErrorReport(BaseModel):
    """Failure reported by the engine (or an operator) for recovery."""

    workflow_id: str = Field(..., min_length=1)
    execution_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    status_code: Optional[int] = None
    error_code: Optional[str] = None
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
