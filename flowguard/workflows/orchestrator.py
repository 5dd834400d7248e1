"""Dependency-ordered deployment of workflow templates to the engine."""

import time
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger

from ..models.deployment import (
    DeploymentResult,
    HealthReport,
    WorkflowHealth,
    WorkflowHealthStatus,
)
from ..models.workflow import WorkflowDefinition, WorkflowTemplate
from ..remote.client import RemoteWorkflowClient, RemoteWorkflowError
from ..templates.registry import TemplateRegistry
from ..templates.resolver import ConfigurationError


class DeploymentOrchestrator:
    """
    Pushes templates to the engine one at a time in dependency order.

    Features:
    - Upsert by workflow display name (create, or update when forced)
    - Explicit activation for definitions declared active
    - Partial-failure semantics: one template failing never stops the batch
    - Health check over everything deployed on the engine
    """

    def __init__(self, client: RemoteWorkflowClient, registry: TemplateRegistry) -> None:
        self.client = client
        self.registry = registry

    async def deploy(
        self,
        templates: Optional[Sequence[WorkflowTemplate]] = None,
        force: bool = False,
        include: Optional[Callable[[WorkflowTemplate], bool]] = None,
    ) -> DeploymentResult:
        """Deploy templates sequentially.

        Args:
            templates: Templates in deployment order; defaults to the resolved catalog
            force: Re-push workflows that already exist on the engine
            include: Predicate selecting eligible templates; the rest are skipped

        Raises:
            ConfigurationError: if the default order cannot be resolved
        """
        started = time.monotonic()
        ordered = list(templates) if templates is not None else self.registry.resolve_order()
        result = DeploymentResult()

        existing: Dict[str, WorkflowDefinition] = {}
        listing_error: Optional[str] = None
        try:
            existing = {workflow.name: workflow for workflow in await self.client.list_workflows()}
        except RemoteWorkflowError as e:
            listing_error = str(e)
            logger.error(f"Could not read deployed workflows: {e}")

        for template in ordered:
            if include is not None and not include(template):
                result.record_skipped(template.id, "Not selected for this deployment")
                continue

            if listing_error:
                result.record_failed(template.id, listing_error)
                continue

            try:
                if template.workflow is None:
                    raise ConfigurationError(f"Template {template.id} has no workflow definition")

                current = existing.get(template.workflow.name)
                if current is not None and not force:
                    logger.info(f"Workflow already exists, skipping: {template.id}")
                    result.record_skipped(template.id, f"Already deployed as {current.id}")
                    continue

                deployed = await self.deploy_template(template, current)
                existing[deployed.name] = deployed
                verb = "Updated" if current is not None else "Created"
                result.record_deployed(template.id, f"{verb} remote workflow {deployed.id}")

            except Exception as e:
                logger.error(f"Failed to deploy workflow {template.id}: {e}")
                result.record_failed(template.id, str(e))

        result.success = not result.failed
        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Deployment batch finished: {len(result.deployed)} deployed, "
            f"{len(result.skipped)} skipped, {len(result.failed)} failed"
        )
        return result

    async def deploy_template(
        self,
        template: WorkflowTemplate,
        existing: Optional[WorkflowDefinition] = None,
    ) -> WorkflowDefinition:
        """Create or update one template's workflow and activate it if declared active.

        When ``existing`` is not given the engine is searched by workflow name.
        """
        if template.workflow is None:
            raise ConfigurationError(f"Template {template.id} has no workflow definition")

        if existing is None:
            existing = next(
                (w for w in await self.client.list_workflows() if w.name == template.workflow.name),
                None,
            )

        if existing is not None and existing.id:
            logger.info(f"Updating existing workflow: {template.id}")
            deployed = await self.client.update_workflow(existing.id, template.workflow)
            if not deployed.id:
                deployed = deployed.model_copy(update={"id": existing.id})
        else:
            logger.info(f"Creating new workflow: {template.id}")
            deployed = await self.client.create_workflow(template.workflow)

        # Activation is never implied by create/update.
        if template.workflow.active:
            await self.client.activate_workflow(deployed.id)
            deployed = deployed.model_copy(update={"active": True})

        logger.info(f"Workflow deployed: {template.id} (remote ID: {deployed.id})")
        return deployed

    async def import_workflows(self, workflows: Dict[str, WorkflowDefinition]) -> List[str]:
        """Create every given definition as a new workflow; returns the new remote ids."""
        logger.info(f"Importing {len(workflows)} workflows")
        created = []
        for key, workflow in workflows.items():
            imported = await self.client.import_workflow(workflow)
            logger.info(f"Workflow imported: {key} -> {imported.id}")
            created.append(imported.id)
        return created

    async def health_check(self) -> HealthReport:
        """Report activation and last-execution state of every deployed workflow."""
        try:
            deployed = await self.client.list_workflows()
        except RemoteWorkflowError as e:
            logger.error(f"Health check failed: {e}")
            return HealthReport(healthy=False, workflows=[])

        workflows = []
        healthy = True
        for workflow in deployed:
            status = WorkflowHealthStatus.HEALTHY if workflow.active else WorkflowHealthStatus.INACTIVE
            last_started = None
            try:
                executions = await self.client.list_executions(workflow.id, limit=5)
                last = executions[0] if executions else None
                if last is not None:
                    last_started = last.started_at
                    if not last.finished:
                        status = WorkflowHealthStatus.ERROR
            except RemoteWorkflowError:
                status = WorkflowHealthStatus.ERROR

            if status != WorkflowHealthStatus.HEALTHY:
                healthy = False

            workflows.append(
                WorkflowHealth(
                    id=workflow.id or "",
                    name=workflow.name,
                    active=workflow.active,
                    last_execution=last_started,
                    status=status,
                )
            )

        return HealthReport(healthy=healthy, workflows=workflows)
