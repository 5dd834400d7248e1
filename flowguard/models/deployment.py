"""Deployment configuration and status reports."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class DeploymentConfig(BaseModel):
    """Options for a complete deployment run."""

    environment: str = "development"
    force: bool = Field(default=False, description="Re-push workflows that already exist")
    skip_validation: bool = False
    include_test_data: bool = Field(default=False, description="Run smoke executions")


class DeploymentError(BaseModel):
    """Error attributed to a template, or to ``deployment`` for run-level aborts."""

    template_id: str
    error: str


class DeploymentResult(BaseModel):
    """Aggregated outcome of a deployment.

    ``deployed``, ``failed`` and ``skipped`` partition the templates that were
    considered; ``outcomes`` carries a readable message for each of them.
    """

    success: bool = False
    deployed: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    errors: List[DeploymentError] = Field(default_factory=list)
    outcomes: Dict[str, str] = Field(default_factory=dict)
    duration_ms: int = 0

    def record_deployed(self, template_id: str, message: str) -> None:
        self.deployed.append(template_id)
        self.outcomes[template_id] = message

    def record_skipped(self, template_id: str, message: str) -> None:
        self.skipped.append(template_id)
        self.outcomes[template_id] = message

    def record_failed(self, template_id: str, error: str) -> None:
        self.failed.append(template_id)
        self.errors.append(DeploymentError(template_id=template_id, error=error))
        self.outcomes[template_id] = f"Failed: {error}"


class CatalogValidation(BaseModel):
    """Result of validating the template catalog."""

    valid: bool
    errors: List[str] = Field(default_factory=list)


class WorkflowHealthStatus(str, Enum):
    HEALTHY = "healthy"
    INACTIVE = "inactive"
    ERROR = "error"


class WorkflowHealth(BaseModel):
    id: str
    name: str
    active: bool
    last_execution: Optional[datetime] = None
    status: WorkflowHealthStatus


class HealthReport(BaseModel):
    """Health of every workflow deployed on the engine."""

    healthy: bool
    workflows: List[WorkflowHealth] = Field(default_factory=list)


class DeploymentValidation(BaseModel):
    """Health report plus the issues that make a deployment unhealthy."""

    healthy: bool
    workflows: List[WorkflowHealth] = Field(default_factory=list)
    issues: List[str] = Field(default_factory=list)


class DeploymentStatus(BaseModel):
    deployed: bool
    version: str
    workflows: int
    active_workflows: int
    environment: str
