"""Workflow models mirroring the remote engine's JSON contract."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TemplateCategory(str, Enum):
    """Business area a workflow template belongs to."""

    SCHEDULING = "scheduling"
    NOTIFICATIONS = "notifications"
    QUEUE = "queue"
    MONITORING = "monitoring"
    INTEGRATION = "integration"


class TemplatePriority(str, Enum):
    """Deployment priority of a template."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PolicyCategory(str, Enum):
    """Error policy buckets used by the recovery engine."""

    CRITICAL = "critical"
    COMMUNICATION = "communication"
    MONITORING = "monitoring"
    REPORTING = "reporting"
    DEFAULT = "default"


class EngineModel(BaseModel):
    """Base for models exchanged with the engine (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_payload(self) -> Dict[str, Any]:
        """Serialize using the engine's field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ConnectionTarget(EngineModel):
    """One edge endpoint in the connection graph."""

    node: str
    type: str = "main"
    index: int = 0


# node name -> output port ("main") -> output index -> targets
WorkflowConnections = Dict[str, Dict[str, List[List[ConnectionTarget]]]]


class WorkflowNode(EngineModel):
    """A single node of a workflow graph."""

    id: str
    name: str
    type: str
    type_version: float = Field(default=1, alias="typeVersion")
    position: List[float] = Field(default_factory=lambda: [0, 0])
    parameters: Dict[str, Any] = Field(default_factory=dict)
    credentials: Optional[Dict[str, Any]] = None
    webhook_id: Optional[str] = Field(None, alias="webhookId")
    continue_on_fail: Optional[bool] = Field(None, alias="continueOnFail")
    retry_on_fail: Optional[bool] = Field(None, alias="retryOnFail")
    max_tries: Optional[int] = Field(None, alias="maxTries")
    wait_between_tries: Optional[int] = Field(None, alias="waitBetweenTries")


class WorkflowSettings(EngineModel):
    """Execution settings attached to a workflow."""

    execution_order: str = Field(default="v1", alias="executionOrder")
    save_data_error_execution: str = Field(default="all", alias="saveDataErrorExecution")
    save_data_success_execution: str = Field(default="all", alias="saveDataSuccessExecution")
    save_manual_executions: bool = Field(default=True, alias="saveManualExecutions")
    caller_policy: str = Field(default="workflowsFromSameOwner", alias="callerPolicy")
    error_workflow: Optional[str] = Field(None, alias="errorWorkflow")
    timezone: str = "America/Sao_Paulo"


class WorkflowDefinition(EngineModel):
    """Workflow as stored by the engine.

    ``id`` is empty until the engine assigns one on the first create.
    """

    id: Optional[str] = None
    name: str
    active: bool = False
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: WorkflowConnections = Field(default_factory=dict)
    settings: Optional[WorkflowSettings] = None
    tags: Optional[List[Any]] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Optional[str]:
        """Engines may hand back numeric ids."""
        return None if v is None else str(v)

    def without_id(self) -> "WorkflowDefinition":
        """Return a copy suitable for creating a new remote workflow."""
        return self.model_copy(update={"id": None}, deep=True)

    def webhook_nodes(self, node_type: str) -> List[WorkflowNode]:
        """Nodes of the given webhook node type."""
        return [node for node in self.nodes if node.type == node_type]


class WorkflowExecution(EngineModel):
    """Handle/record for one asynchronous run of a workflow."""

    id: str
    finished: bool = False
    mode: Optional[str] = None
    retry_of: Optional[str] = Field(None, alias="retryOf")
    retry_success_id: Optional[str] = Field(None, alias="retrySuccessId")
    started_at: Optional[datetime] = Field(None, alias="startedAt")
    stopped_at: Optional[datetime] = Field(None, alias="stoppedAt")
    workflow_id: Optional[str] = Field(None, alias="workflowId")
    data: Optional[Dict[str, Any]] = None

    @field_validator("id", "workflow_id", "retry_of", "retry_success_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    @property
    def start_data(self) -> Dict[str, Any]:
        """Input data the execution was started with, if the engine returned it."""
        result_data = (self.data or {}).get("resultData") or {}
        return result_data.get("startData") or {}


class WorkflowTemplate(BaseModel):
    """Local declaration of a workflow plus deployment metadata."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    category: TemplateCategory
    priority: TemplatePriority = TemplatePriority.MEDIUM
    dependencies: List[str] = Field(default_factory=list)
    workflow: Optional[WorkflowDefinition] = None
    policy_category: Optional[PolicyCategory] = Field(
        None, description="Explicit error policy; overrides name-based inference"
    )
