"""Shared fixtures: test settings and an in-memory workflow engine."""

from __future__ import annotations

import itertools
import json
import re
import sys
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

# -- Path management ------------------------------------------------------
# The service uses a flat ``flowguard/`` package layout. When pytest runs
# without an editable install the repository root is not on ``sys.path``,
# so it is added here before the package is imported.
SERVICE_ROOT = Path(__file__).resolve().parent.parent
if str(SERVICE_ROOT) not in sys.path:
    sys.path.insert(0, str(SERVICE_ROOT))

from flowguard.config import FlowguardSettings
from flowguard.main import create_app
from flowguard.models.workflow import (
    TemplateCategory,
    TemplatePriority,
    WorkflowDefinition,
    WorkflowNode,
    WorkflowTemplate,
)
from flowguard.remote.client import RemoteWorkflowClient
from flowguard.templates.registry import TemplateRegistry

WORKFLOW_PATH = re.compile(r"^/api/v1/workflows/(?P<id>[^/]+)(?P<action>/activate|/execute|/statistics)?$")
EXECUTION_PATH = re.compile(r"^/api/v1/executions/(?P<id>[^/]+)$")


class FakeEngine:
    """In-memory stand-in for the engine's REST API, served through ``httpx.MockTransport``.

    Like the real engine, ``active`` is ignored on create and update; only
    the activation endpoint changes it.

    Failure injection:
    - ``down``: every request raises ``httpx.ConnectError``
    - ``fail_create``: workflow names whose create/update answers HTTP 500
    - ``fail_execute``: workflow ids whose execute answers HTTP 500 (``"*"`` for all)
    - ``fail_listing``: listing workflows answers HTTP 500
    - ``html_listing``: listing workflows answers 200 with an HTML page
    """

    def __init__(self) -> None:
        self.workflows: Dict[str, Dict[str, Any]] = {}
        self.executions: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.down = False
        self.fail_create: Set[str] = set()
        self.fail_execute: Set[str] = set()
        self.fail_listing = False
        self.html_listing = False
        self.unfinished_executions = False
        self._workflow_ids = itertools.count(1)
        self._execution_ids = itertools.count(1)

    # -- helpers used by tests -------------------------------------------------

    def add_workflow(self, name: str, active: bool = True, nodes: Optional[List[Dict[str, Any]]] = None) -> str:
        workflow_id = f"wf-{next(self._workflow_ids)}"
        self.workflows[workflow_id] = {
            "id": workflow_id,
            "name": name,
            "active": active,
            "nodes": nodes or [{"id": "n1", "name": "Start", "type": "n8n-nodes-base.manualTrigger"}],
            "connections": {},
        }
        return workflow_id

    def add_execution(self, workflow_id: str, start_data: Optional[Dict[str, Any]] = None, finished: bool = True) -> str:
        execution_id = f"ex-{next(self._execution_ids)}"
        self.executions[execution_id] = {
            "id": execution_id,
            "finished": finished,
            "mode": "manual",
            "workflowId": workflow_id,
            "startedAt": datetime.now(timezone.utc).isoformat(),
            "data": {"resultData": {"startData": start_data or {}}},
        }
        return execution_id

    def by_name(self, name: str) -> Optional[Dict[str, Any]]:
        return next((w for w in self.workflows.values() if w["name"] == name), None)

    def calls(self, method: str, path_prefix: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.startswith(path_prefix)]

    # -- transport -------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            raise httpx.ConnectError("Connection refused", request=request)

        path = request.url.path
        body = json.loads(request.content) if request.content else {}

        if path == "/healthz":
            return httpx.Response(200, json={"status": "ok"})
        if path == "/api/v1/about":
            return httpx.Response(200, json={"version": "1.0.0"})

        if path == "/api/v1/workflows":
            if request.method == "GET":
                return self._list_workflows(request)
            return self._save_workflow(None, body)

        match = WORKFLOW_PATH.match(path)
        if match:
            workflow_id, action = match.group("id"), match.group("action")
            if workflow_id not in self.workflows:
                return httpx.Response(404, json={"message": "Workflow not found"})
            if action == "/activate":
                self.workflows[workflow_id]["active"] = bool(body.get("active"))
                return httpx.Response(200, json=self.workflows[workflow_id])
            if action == "/execute":
                return self._execute(workflow_id, body)
            if action == "/statistics":
                return httpx.Response(200, json={"executions": 0})
            if request.method == "PUT":
                return self._save_workflow(workflow_id, body)
            if request.method == "DELETE":
                return httpx.Response(200, json=self.workflows.pop(workflow_id))
            return httpx.Response(200, json=self.workflows[workflow_id])

        if path == "/api/v1/executions":
            return self._list_executions(request)

        match = EXECUTION_PATH.match(path)
        if match:
            execution_id = match.group("id")
            if execution_id not in self.executions:
                return httpx.Response(404, json={"message": "Execution not found"})
            if request.method == "DELETE":
                return httpx.Response(200, json=self.executions.pop(execution_id))
            return httpx.Response(200, json=self.executions[execution_id])

        return httpx.Response(404, json={"message": f"Unknown route {path}"})

    def _list_workflows(self, request: httpx.Request) -> httpx.Response:
        if self.fail_listing:
            return httpx.Response(500, json={"message": "Internal error"})
        if self.html_listing:
            return httpx.Response(200, text="<html>login</html>", headers={"Content-Type": "text/html"})
        workflows = list(self.workflows.values())
        active = request.url.params.get("active")
        if active is not None:
            workflows = [w for w in workflows if w["active"] == (active == "true")]
        return httpx.Response(200, json={"data": workflows})

    def _save_workflow(self, workflow_id: Optional[str], body: Dict[str, Any]) -> httpx.Response:
        if body.get("name") in self.fail_create:
            return httpx.Response(500, json={"message": "Internal error"})
        if workflow_id is None:
            workflow_id = f"wf-{next(self._workflow_ids)}"
            active = False
        else:
            active = self.workflows[workflow_id]["active"]
        self.workflows[workflow_id] = {**body, "id": workflow_id, "active": active}
        return httpx.Response(200, json=self.workflows[workflow_id])

    def _execute(self, workflow_id: str, body: Dict[str, Any]) -> httpx.Response:
        if workflow_id in self.fail_execute or "*" in self.fail_execute:
            return httpx.Response(500, json={"message": "Execution failed"})
        execution_id = self.add_execution(
            workflow_id, body.get("inputData"), finished=not self.unfinished_executions
        )
        return httpx.Response(200, json={"id": execution_id, "workflowId": workflow_id, "finished": False})

    def _list_executions(self, request: httpx.Request) -> httpx.Response:
        executions = list(reversed(list(self.executions.values())))
        workflow_id = request.url.params.get("workflowId")
        if workflow_id:
            executions = [e for e in executions if e["workflowId"] == workflow_id]
        limit = int(request.url.params.get("limit", 20))
        return httpx.Response(200, json={"data": executions[:limit]})


@pytest.fixture
def test_settings() -> FlowguardSettings:
    """Provide test-specific settings."""
    return FlowguardSettings(
        app_name="flowguard-test",
        environment="test",
        base_url="http://engine.test",
        webhook_url="https://hooks.clinic.test",
        read_retry_attempts=1,
        smoke_test_grace_seconds=0,
    )


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest_asyncio.fixture
async def engine_client(
    test_settings: FlowguardSettings, fake_engine: FakeEngine
) -> AsyncGenerator[RemoteWorkflowClient, None]:
    """A real client whose HTTP traffic is served by :class:`FakeEngine`."""

    client = RemoteWorkflowClient(test_settings, transport=httpx.MockTransport(fake_engine.handler))
    try:
        yield client
    finally:
        await client.aclose()


def make_template(
    template_id: str,
    dependencies: Optional[List[str]] = None,
    priority: TemplatePriority = TemplatePriority.HIGH,
    active: bool = True,
    with_workflow: bool = True,
) -> WorkflowTemplate:
    """Build a small template whose workflow is named after the template."""

    workflow = None
    if with_workflow:
        workflow = WorkflowDefinition(
            name=template_id,
            active=active,
            nodes=[WorkflowNode(id="n1", name="Start", type="n8n-nodes-base.manualTrigger")],
        )
    return WorkflowTemplate(
        id=template_id,
        name=template_id.replace("-", " ").title(),
        description=f"{template_id} template",
        category=TemplateCategory.SCHEDULING,
        priority=priority,
        dependencies=dependencies or [],
        workflow=workflow,
    )


@pytest.fixture
def small_registry() -> TemplateRegistry:
    """Three templates where ``c`` depends on ``b`` which depends on ``a``."""

    return TemplateRegistry(
        [
            make_template("c", ["b"]),
            make_template("a"),
            make_template("b", ["a"]),
        ]
    )


@pytest.fixture
def catalog_registry() -> TemplateRegistry:
    """The packaged template catalog."""

    return TemplateRegistry()


@pytest.fixture
def app(test_settings):
    """Create FastAPI app with test settings."""
    return create_app(test_settings)


@pytest.fixture
def client(app):
    """Provide TestClient for the service."""
    return TestClient(app)
