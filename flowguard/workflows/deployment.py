"""Complete deployment of the automation system onto the engine."""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from ..config import SERVICE_VERSION, FlowguardSettings, get_settings
from ..models.deployment import (
    DeploymentConfig,
    DeploymentError,
    DeploymentResult,
    DeploymentStatus,
    DeploymentValidation,
    WorkflowHealthStatus,
)
from ..models.workflow import TemplatePriority
from ..remote.client import RemoteWorkflowClient, RemoteWorkflowError
from ..templates.registry import TemplateRegistry
from ..templates.resolver import ConfigurationError
from .orchestrator import DeploymentOrchestrator

# Provisioned out-of-band in the engine's credential store.
REQUIRED_CREDENTIALS = [
    "clinic-postgres-credentials",
    "clinic-redis-credentials",
    "clinic-smtp-credentials",
    "whatsapp-api-credentials",
    "twilio-credentials",
    "google-calendar-credentials",
]


class DeploymentAborted(Exception):
    """A validation gate failed; nothing has been pushed to the engine."""


class DeploymentManager:
    """
    Facade running the whole deployment.

    Steps:
    1. Validate engine connectivity (fatal unless skip_validation)
    2. Validate the template catalog (fatal unless skip_validation)
    3. Deploy high-priority templates in dependency order (failures recorded)
    4. Report required credentials (never fails)
    5. Resolve webhook URLs of active workflows (fatal on failure)
    6. Kick off monitoring (best effort)
    7. Optional smoke executions (warnings only)
    """

    def __init__(
        self,
        client: RemoteWorkflowClient,
        registry: Optional[TemplateRegistry] = None,
        settings: Optional[FlowguardSettings] = None,
    ) -> None:
        self.client = client
        self.registry = registry or TemplateRegistry()
        self.settings = settings or get_settings()
        self.orchestrator = DeploymentOrchestrator(client, self.registry)

    async def deploy_complete(self, config: Optional[DeploymentConfig] = None) -> DeploymentResult:
        """Run every deployment step and return the aggregated result."""
        config = config or DeploymentConfig()
        started = time.monotonic()
        logger.info(
            f"Starting complete deployment (environment={config.environment}, "
            f"force={config.force}, skip_validation={config.skip_validation})"
        )

        try:
            if not config.skip_validation:
                connected, reason = await self.validate_connection()
                if not connected:
                    raise DeploymentAborted(f"Engine connection failed: {reason}")
                logger.info("Engine connection validated")

                validation = self.registry.validate()
                if not validation.valid:
                    raise DeploymentAborted(f"Workflow validation failed: {', '.join(validation.errors)}")
                logger.info("Workflow templates validated")

            ordered = self.registry.resolve_order()
        except (DeploymentAborted, ConfigurationError) as e:
            return self._aborted(str(e), started)

        result = await self.orchestrator.deploy(
            ordered,
            force=config.force,
            include=lambda template: template.priority == TemplatePriority.HIGH,
        )

        await self.setup_credentials(config)

        try:
            await self.setup_webhooks(config)
        except Exception as e:
            logger.error(f"Deployment failed during webhook setup: {e}")
            result.errors.append(DeploymentError(template_id="deployment", error=f"Webhook setup failed: {e}"))
            result.success = False
            result.duration_ms = _elapsed_ms(started)
            return result

        await self.initialize_monitoring(config)

        if config.include_test_data:
            await self.run_test_executions(config)

        result.success = not result.failed
        result.duration_ms = _elapsed_ms(started)
        logger.info(
            f"Deployment completed: success={result.success}, deployed={len(result.deployed)}, "
            f"failed={len(result.failed)}, duration={result.duration_ms}ms"
        )
        return result

    def _aborted(self, reason: str, started: float) -> DeploymentResult:
        logger.error(f"Deployment aborted: {reason}")
        result = DeploymentResult(success=False)
        for template_id in self.registry.template_ids:
            result.failed.append(template_id)
            result.outcomes[template_id] = f"Not attempted: {reason}"
        result.errors.append(DeploymentError(template_id="deployment", error=reason))
        result.duration_ms = _elapsed_ms(started)
        return result

    async def validate_connection(self) -> Tuple[bool, Optional[str]]:
        """Check the engine answers and report its instance information."""
        if not await self.client.test_connection():
            return False, "Cannot connect to engine instance"

        try:
            info = await self.client.get_instance_info()
        except RemoteWorkflowError as e:
            return False, str(e)

        logger.info(f"Engine instance version: {info.get('version', 'unknown')}")
        return True, None

    async def setup_credentials(self, config: DeploymentConfig) -> None:
        # Credentials are never written from here; only their names are reported.
        logger.warning(
            f"Credentials must be configured in the engine ({config.environment}): "
            f"{', '.join(REQUIRED_CREDENTIALS)}"
        )

    async def setup_webhooks(self, config: DeploymentConfig) -> List[str]:
        """Resolve public URLs of webhook nodes in active workflows.

        Raises:
            RemoteWorkflowError: if active workflows cannot be listed
        """
        logger.info("Setting up webhooks")
        active = await self.client.list_workflows(active=True)
        webhook_workflows = [w for w in active if w.webhook_nodes(self.settings.webhook_node_type)]
        logger.info(f"Webhook-enabled workflows found: {len(webhook_workflows)}")

        base_url = self.settings.webhook_url.rstrip("/")
        urls = []
        for workflow in webhook_workflows:
            for node in workflow.webhook_nodes(self.settings.webhook_node_type):
                path = node.parameters.get("path")
                if not path:
                    continue
                url = f"{base_url}/webhook/{path}"
                logger.info(f"Webhook configured: {workflow.name} / {node.name} -> {url}")
                urls.append(url)
        return urls

    async def initialize_monitoring(self, config: DeploymentConfig) -> None:
        logger.info("Initializing monitoring system")
        try:
            workflows = {w.name: w for w in await self.client.list_workflows()}

            monitoring = workflows.get(self.settings.monitoring_workflow)
            if monitoring is not None and monitoring.active and monitoring.id:
                execution = await self.client.execute_workflow(
                    monitoring.id, {"initialCheck": True, "environment": config.environment}
                )
                logger.info(f"Initial health check executed: {execution.id}")

            metrics = workflows.get(self.settings.metrics_workflow)
            if metrics is not None and metrics.active:
                logger.info(f"Business metrics workflow is active: {metrics.id}")
        except Exception as e:
            # Monitoring must not stop the deployment.
            logger.error(f"Failed to initialize monitoring: {e}")

    async def run_test_executions(self, config: DeploymentConfig) -> Dict[str, bool]:
        """Smoke-run a few active workflows; returns workflow name -> finished."""
        logger.info("Running test executions")
        results: Dict[str, bool] = {}
        try:
            workflows = await self.client.list_workflows(active=True)
        except Exception as e:
            logger.error(f"Failed to run test executions: {e}")
            return results

        testable = [w for w in workflows if "monitoring" not in w.name and "metrics" not in w.name]
        for workflow in testable[: self.settings.smoke_test_limit]:
            try:
                execution = await self.client.execute_workflow(
                    workflow.id, self.generate_test_data(workflow.name)
                )
                logger.info(f"Test execution started: {workflow.name} ({execution.id})")

                await asyncio.sleep(self.settings.smoke_test_grace_seconds)

                state = await self.client.get_execution(execution.id)
                results[workflow.name] = state.finished
                logger.info(f"Test execution {execution.id} finished={state.finished}")
            except Exception as e:
                logger.warning(f"Test execution failed for {workflow.name} (expected in some cases): {e}")
                results[workflow.name] = False
        return results

    def generate_test_data(self, workflow_name: str) -> Dict[str, Any]:
        """Synthetic input for a smoke execution, always flagged ``test``."""
        now = datetime.now(timezone.utc)
        tomorrow = (now + timedelta(days=1)).isoformat()
        base = {"test": True, "timestamp": now.isoformat(), "environment": "deployment_test"}

        if workflow_name == "appointment-booking":
            return {
                **base,
                "patientId": "test-patient-123",
                "doctorId": "test-doctor-123",
                "specialtyId": "test-specialty-123",
                "date": tomorrow,
                "duration": 30,
                "patientName": "Test Patient",
                "patientEmail": "test@example.com",
                "patientPhone": "+5511999999999",
            }
        if workflow_name == "reminder-system":
            return {**base, "scheduledExecution": True, "reminderType": "test"}
        if workflow_name == "waitlist-management":
            return {**base, "specialtyId": "test-specialty-123", "date": tomorrow, "duration": 30}
        return base

    async def validate_deployment(self) -> DeploymentValidation:
        """Re-read the engine and list what makes the deployment unhealthy."""
        logger.info("Validating deployment health")
        health = await self.orchestrator.health_check()
        issues = []

        inactive_required = [
            w.name for w in health.workflows
            if w.name in self.settings.required_active_workflows and not w.active
        ]
        if inactive_required:
            issues.append(f"Critical workflows inactive: {', '.join(inactive_required)}")

        in_error = [w.name for w in health.workflows if w.status == WorkflowHealthStatus.ERROR]
        if in_error:
            issues.append(f"Workflows with errors: {', '.join(in_error)}")

        if not health.workflows and not health.healthy:
            issues.append("Validation failed: engine state could not be read")

        return DeploymentValidation(
            healthy=health.healthy and not issues,
            workflows=health.workflows,
            issues=issues,
        )

    async def cleanup(self) -> int:
        """Delete executions started with synthetic test data; returns how many."""
        logger.info("Cleaning up deployment artifacts")
        try:
            executions = await self.client.list_executions(limit=50, include_data=True)
        except RemoteWorkflowError as e:
            logger.error(f"Failed to cleanup deployment: {e}")
            return 0

        removed = 0
        for execution in executions:
            if execution.start_data.get("test") is not True:
                continue
            try:
                await self.client.delete_execution(execution.id)
                removed += 1
            except RemoteWorkflowError as e:
                logger.warning(f"Failed to delete test execution {execution.id}: {e}")

        logger.info(f"Deployment cleanup completed: {removed} test executions removed")
        return removed

    async def get_deployment_status(self) -> DeploymentStatus:
        try:
            workflows = await self.client.list_workflows()
        except RemoteWorkflowError as e:
            logger.error(f"Failed to get deployment status: {e}")
            return DeploymentStatus(
                deployed=False,
                version="unknown",
                workflows=0,
                active_workflows=0,
                environment=self.settings.environment,
            )

        return DeploymentStatus(
            deployed=bool(workflows),
            version=SERVICE_VERSION,
            workflows=len(workflows),
            active_workflows=sum(1 for w in workflows if w.active),
            environment=self.settings.environment,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
