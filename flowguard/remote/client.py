"""Authenticated HTTP client for the remote workflow-execution engine."""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import FlowguardSettings, get_settings
from ..models.workflow import WorkflowDefinition, WorkflowExecution

ModelT = TypeVar("ModelT", bound=BaseModel)


class RemoteWorkflowError(Exception):
    """A call to the engine failed.

    The message always names the operation that was attempted, e.g.
    ``Failed to create workflow: HTTP 500``.
    """

    def __init__(
        self,
        operation: str,
        detail: str,
        target: Optional[str] = None,
        status_code: Optional[int] = None,
        connection_failed: bool = False,
    ) -> None:
        super().__init__(f"Failed to {operation}: {detail}")
        self.operation = operation
        self.target = target
        self.status_code = status_code
        self.connection_failed = connection_failed


async def _log_request(request: httpx.Request) -> None:
    logger.debug(f"Engine request: {request.method} {request.url.path}")


async def _log_response(response: httpx.Response) -> None:
    request = response.request
    logger.info(
        f"Engine response: {request.method} {request.url.path} -> {response.status_code}"
    )


class RemoteWorkflowClient:
    """CRUD, execute and activation calls against the engine's REST API.

    Only method, target and outcome are ever logged; workflow and execution
    bodies can carry patient data and stay out of the logs.
    """

    def __init__(
        self,
        settings: Optional[FlowguardSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Connection settings, defaults to the cached environment settings
            transport: Optional httpx transport (tests plug a mock engine in here)
        """
        self.settings = settings or get_settings()
        self._client = httpx.AsyncClient(
            base_url=self.settings.base_url,
            auth=httpx.BasicAuth(
                self.settings.basic_auth_user, self.settings.basic_auth_password
            ),
            timeout=self.settings.request_timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
            event_hooks={"request": [_log_request], "response": [_log_response]},
        )

    async def __aenter__(self) -> "RemoteWorkflowClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        if method != "GET":
            return await self._client.request(method, path, params=params, json=json)

        # Reads are idempotent, so transient transport failures are retried.
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.settings.read_retry_attempts)),
            wait=wait_exponential(multiplier=0.5, max=5),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )
        return await retrying(self._client.request, method, path, params=params)

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        target: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        try:
            response = await self._send(method, path, params=params, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            detail = f"HTTP {status_code}"
            engine_message = _engine_message(e.response)
            if engine_message:
                detail = f"{detail} {engine_message}"
            logger.error(f"Engine call failed: {operation} ({target or path}) - HTTP {status_code}")
            raise RemoteWorkflowError(operation, detail, target, status_code=status_code) from e
        except httpx.HTTPError as e:
            logger.error(f"Engine call failed: {operation} ({target or path}) - {type(e).__name__}")
            raise RemoteWorkflowError(
                operation,
                str(e) or type(e).__name__,
                target,
                connection_failed=isinstance(e, httpx.ConnectError),
            ) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Engine call failed: {operation} ({target or path}) - invalid JSON response")
            raise RemoteWorkflowError(operation, "invalid JSON response", target) from e

    async def create_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """Create a new workflow and return it with its engine-assigned id."""
        payload = workflow.without_id().to_payload()
        data = await self._request("create workflow", "POST", "/api/v1/workflows", workflow.name, json=payload)
        created = _parse(WorkflowDefinition, data, "create workflow", workflow.name)
        logger.info(f"Workflow created: {created.id}")
        return created

    async def update_workflow(
        self, workflow_id: str, workflow: WorkflowDefinition
    ) -> WorkflowDefinition:
        """Replace an existing workflow's definition in place."""
        payload = workflow.without_id().to_payload()
        data = await self._request(
            "update workflow", "PUT", f"/api/v1/workflows/{workflow_id}", workflow_id, json=payload
        )
        logger.info(f"Workflow updated: {workflow_id}")
        return _parse(WorkflowDefinition, data, "update workflow", workflow_id)

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        data = await self._request("get workflow", "GET", f"/api/v1/workflows/{workflow_id}", workflow_id)
        return _parse(WorkflowDefinition, data, "get workflow", workflow_id)

    async def list_workflows(
        self, active: Optional[bool] = None, tags: Optional[Sequence[str]] = None
    ) -> List[WorkflowDefinition]:
        """List workflows, optionally filtered by activation state and tags."""
        params: Dict[str, Any] = {}
        if active is not None:
            params["active"] = "true" if active else "false"
        if tags:
            params["tags"] = ",".join(tags)

        data = await self._request("list workflows", "GET", "/api/v1/workflows", params=params)
        return _parse_page(WorkflowDefinition, data, "list workflows")

    async def set_workflow_active(self, workflow_id: str, active: bool) -> None:
        """Activate or deactivate a workflow."""
        operation = "activate workflow" if active else "deactivate workflow"
        await self._request(
            operation,
            "PATCH",
            f"/api/v1/workflows/{workflow_id}/activate",
            workflow_id,
            json={"active": active},
        )
        logger.info(f"Workflow {workflow_id} active={active}")

    async def activate_workflow(self, workflow_id: str) -> None:
        await self.set_workflow_active(workflow_id, True)

    async def deactivate_workflow(self, workflow_id: str) -> None:
        await self.set_workflow_active(workflow_id, False)

    async def execute_workflow(
        self, workflow_id: str, input_data: Optional[Dict[str, Any]] = None
    ) -> WorkflowExecution:
        """Submit a workflow run.

        The engine runs it asynchronously; poll :meth:`get_execution` with the
        returned handle's id to follow it.
        """
        payload: Dict[str, Any] = {}
        if input_data:
            payload["inputData"] = input_data

        data = await self._request(
            "execute workflow", "POST", f"/api/v1/workflows/{workflow_id}/execute", workflow_id, json=payload
        )
        execution = _parse(WorkflowExecution, data, "execute workflow", workflow_id)
        logger.info(f"Workflow {workflow_id} submitted as execution {execution.id}")
        return execution

    async def get_execution(
        self, execution_id: str, include_data: bool = False
    ) -> WorkflowExecution:
        params = {"includeData": "true"} if include_data else None
        data = await self._request(
            "get execution", "GET", f"/api/v1/executions/{execution_id}", execution_id, params=params
        )
        return _parse(WorkflowExecution, data, "get execution", execution_id)

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        limit: int = 20,
        include_data: bool = False,
    ) -> List[WorkflowExecution]:
        """List recent executions, newest first."""
        params: Dict[str, Any] = {"limit": limit}
        if workflow_id:
            params["workflowId"] = workflow_id
        if include_data:
            params["includeData"] = "true"

        data = await self._request("list executions", "GET", "/api/v1/executions", workflow_id, params=params)
        return _parse_page(WorkflowExecution, data, "list executions", workflow_id)

    async def delete_execution(self, execution_id: str) -> None:
        await self._request(
            "delete execution", "DELETE", f"/api/v1/executions/{execution_id}", execution_id
        )
        logger.info(f"Execution deleted: {execution_id}")

    async def delete_workflow(self, workflow_id: str) -> None:
        await self._request("delete workflow", "DELETE", f"/api/v1/workflows/{workflow_id}", workflow_id)
        logger.info(f"Workflow deleted: {workflow_id}")

    async def get_workflow_statistics(self, workflow_id: str) -> Dict[str, Any]:
        return await self._request(
            "get workflow statistics", "GET", f"/api/v1/workflows/{workflow_id}/statistics", workflow_id
        ) or {}

    async def test_connection(self) -> bool:
        """Return True if the engine answers its health endpoint. Never raises."""
        try:
            response = await self._client.get("/healthz")
            return response.status_code == 200
        except Exception as e:
            logger.error(f"Engine connection test failed: {type(e).__name__}")
            return False

    async def get_instance_info(self) -> Dict[str, Any]:
        return await self._request("get instance info", "GET", "/api/v1/about") or {}

    async def bulk_activate(self, workflow_ids: Sequence[str], active: bool) -> Dict[str, bool]:
        """(De)activate many workflows concurrently.

        Individual failures are reported in the returned mapping instead of
        failing the whole batch.
        """
        results = await asyncio.gather(
            *(self.set_workflow_active(workflow_id, active) for workflow_id in workflow_ids),
            return_exceptions=True,
        )
        outcome = {
            workflow_id: not isinstance(result, BaseException)
            for workflow_id, result in zip(workflow_ids, results)
        }
        logger.info(
            f"Bulk activation completed: {sum(outcome.values())}/{len(outcome)} "
            f"workflows set active={active}"
        )
        return outcome

    async def export_workflow(self, workflow_id: str) -> WorkflowDefinition:
        return await self.get_workflow(workflow_id)

    async def import_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """Create a new workflow from an exported definition (its id is dropped)."""
        return await self.create_workflow(workflow.without_id())

    async def clone_workflow(self, workflow_id: str, new_name: str) -> WorkflowDefinition:
        """Copy an existing workflow under a new name; the copy starts inactive."""
        original = await self.get_workflow(workflow_id)
        clone = original.model_copy(update={"id": None, "name": new_name, "active": False}, deep=True)
        return await self.create_workflow(clone)


def _engine_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return None


def _parse(model: Type[ModelT], data: Any, operation: str, target: Optional[str] = None) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.error(f"Engine call failed: {operation} ({target or model.__name__}) - unexpected response shape")
        raise RemoteWorkflowError(operation, "unexpected response shape", target) from e


def _parse_page(model: Type[ModelT], data: Any, operation: str, target: Optional[str] = None) -> List[ModelT]:
    """Items of a ``{"data": [...]}`` listing page."""
    if data is None:
        return []
    items = data.get("data", []) if isinstance(data, dict) else None
    if not isinstance(items, list):
        logger.error(f"Engine call failed: {operation} ({target or model.__name__}) - unexpected response shape")
        raise RemoteWorkflowError(operation, "unexpected response shape", target)
    return [_parse(model, item, operation, target) for item in items]
