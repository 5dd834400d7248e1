"""Tests for dependency-ordered deployment with partial-failure semantics."""

import pytest

from flowguard.models.deployment import WorkflowHealthStatus
from flowguard.models.workflow import TemplatePriority
from flowguard.templates.registry import TemplateRegistry
from flowguard.workflows.orchestrator import DeploymentOrchestrator

from conftest import make_template


@pytest.fixture
def orchestrator(engine_client, small_registry):
    return DeploymentOrchestrator(engine_client, small_registry)


@pytest.mark.asyncio
async def test_deploys_in_dependency_order(orchestrator, fake_engine):
    result = await orchestrator.deploy()

    assert result.success is True
    assert result.deployed == ["a", "b", "c"]
    assert result.failed == []
    created = [w["name"] for w in fake_engine.workflows.values()]
    assert created == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_active_definitions_are_activated_explicitly(orchestrator, fake_engine):
    await orchestrator.deploy()

    assert all(w["active"] for w in fake_engine.workflows.values())
    assert len(fake_engine.calls("PATCH", "/api/v1/workflows")) == 3


@pytest.mark.asyncio
async def test_inactive_definition_is_not_activated(engine_client, fake_engine):
    registry = TemplateRegistry([make_template("draft", active=False)])

    result = await DeploymentOrchestrator(engine_client, registry).deploy()

    assert result.deployed == ["draft"]
    assert fake_engine.by_name("draft")["active"] is False
    assert fake_engine.calls("PATCH", "/api/v1/workflows") == []


@pytest.mark.asyncio
async def test_second_run_without_force_skips(orchestrator, fake_engine):
    await orchestrator.deploy()
    second = await orchestrator.deploy()

    assert second.deployed == []
    assert second.skipped == ["a", "b", "c"]
    assert second.success is True
    assert second.outcomes["a"].startswith("Already deployed as ")
    assert len(fake_engine.workflows) == 3


@pytest.mark.asyncio
async def test_force_updates_in_place(orchestrator, fake_engine):
    first = await orchestrator.deploy(force=True)
    second = await orchestrator.deploy(force=True)

    assert first.deployed == ["a", "b", "c"]
    assert second.deployed == ["a", "b", "c"]
    assert len(fake_engine.workflows) == 3
    assert len(fake_engine.calls("PUT", "/api/v1/workflows")) == 3
    assert second.outcomes["a"].startswith("Updated remote workflow ")


@pytest.mark.asyncio
async def test_partial_failure_continues_with_remaining_templates(orchestrator, fake_engine):
    fake_engine.fail_create = {"b"}

    result = await orchestrator.deploy()

    assert result.success is False
    assert result.failed == ["b"]
    assert result.deployed == ["a", "c"]
    assert [e.template_id for e in result.errors] == ["b"]
    assert "HTTP 500" in result.errors[0].error
    assert result.outcomes["b"].startswith("Failed: ")


@pytest.mark.asyncio
async def test_every_template_gets_exactly_one_outcome(orchestrator, fake_engine):
    fake_engine.fail_create = {"c"}
    fake_engine.add_workflow("a")

    result = await orchestrator.deploy()

    buckets = result.deployed + result.failed + result.skipped
    assert sorted(buckets) == ["a", "b", "c"]
    assert set(result.outcomes) == {"a", "b", "c"}


@pytest.mark.asyncio
async def test_include_predicate_skips_unselected(engine_client, fake_engine):
    registry = TemplateRegistry(
        [make_template("a"), make_template("b", priority=TemplatePriority.MEDIUM)]
    )
    orchestrator = DeploymentOrchestrator(engine_client, registry)

    result = await orchestrator.deploy(include=lambda t: t.priority == TemplatePriority.HIGH)

    assert result.deployed == ["a"]
    assert result.skipped == ["b"]
    assert result.outcomes["b"] == "Not selected for this deployment"


@pytest.mark.asyncio
async def test_listing_failure_fails_every_eligible_template(orchestrator, fake_engine):
    fake_engine.fail_listing = True

    result = await orchestrator.deploy()

    assert result.failed == ["a", "b", "c"]
    assert fake_engine.workflows == {}


@pytest.mark.asyncio
async def test_import_workflows_creates_each_definition(orchestrator, small_registry, fake_engine):
    created = await orchestrator.import_workflows(small_registry.export_all())

    assert len(created) == 3
    assert {w["name"] for w in fake_engine.workflows.values()} == {"a", "b", "c"}


@pytest.mark.asyncio
async def test_health_check_reports_inactive_and_errors(orchestrator, fake_engine):
    healthy_id = fake_engine.add_workflow("healthy")
    fake_engine.add_execution(healthy_id, finished=True)
    fake_engine.add_workflow("sleeping", active=False)
    broken_id = fake_engine.add_workflow("broken")
    fake_engine.add_execution(broken_id, finished=False)

    report = await orchestrator.health_check()

    statuses = {w.name: w.status for w in report.workflows}
    assert statuses == {
        "healthy": WorkflowHealthStatus.HEALTHY,
        "sleeping": WorkflowHealthStatus.INACTIVE,
        "broken": WorkflowHealthStatus.ERROR,
    }
    assert report.healthy is False


@pytest.mark.asyncio
async def test_health_check_when_engine_down(orchestrator, fake_engine):
    fake_engine.down = True

    report = await orchestrator.health_check()

    assert report.healthy is False
    assert report.workflows == []
