"""Failure classification and automated recovery for engine executions."""

import asyncio
import math
import socket
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import httpx
from loguru import logger

from ..config import FlowguardSettings, get_settings
from ..models.errors import (
    ErrorHandlingResult,
    ErrorPolicy,
    ErrorStatistics,
    ErrorType,
    RecoveryAction,
    RecoveryActionType,
    WorkflowError,
)
from ..models.workflow import PolicyCategory
from ..remote.client import RemoteWorkflowClient, RemoteWorkflowError
from ..templates.registry import TemplateRegistry

DEFAULT_POLICIES: Dict[PolicyCategory, ErrorPolicy] = {
    # Appointments and payments
    PolicyCategory.CRITICAL: ErrorPolicy(
        max_retries=5, retry_delay_ms=2000, exponential_backoff=True, alert_threshold=2, auto_restart=True
    ),
    # Email, SMS, WhatsApp
    PolicyCategory.COMMUNICATION: ErrorPolicy(
        max_retries=3,
        retry_delay_ms=1000,
        exponential_backoff=True,
        alert_threshold=3,
        auto_restart=False,
        fallback_workflow_id="fallback-notification",
    ),
    PolicyCategory.MONITORING: ErrorPolicy(
        max_retries=2, retry_delay_ms=5000, exponential_backoff=False, alert_threshold=1, auto_restart=True
    ),
    PolicyCategory.REPORTING: ErrorPolicy(
        max_retries=2, retry_delay_ms=10000, exponential_backoff=False, alert_threshold=5, auto_restart=False
    ),
    PolicyCategory.DEFAULT: ErrorPolicy(
        max_retries=3, retry_delay_ms=1000, exponential_backoff=True, alert_threshold=3, auto_restart=False
    ),
}

# First match wins.
CATEGORY_KEYWORDS: Tuple[Tuple[PolicyCategory, Tuple[str, ...]], ...] = (
    (PolicyCategory.CRITICAL, ("agendamento", "appointment", "booking", "payment")),
    (PolicyCategory.COMMUNICATION, ("lembrete", "reminder", "notification", "whatsapp", "sms")),
    (PolicyCategory.MONITORING, ("monitoring", "health")),
    (PolicyCategory.REPORTING, ("metrics", "report")),
)

NON_RETRYABLE_MESSAGES = ("authentication", "unauthorized", "forbidden", "not found", "not-found")
CRITICAL_MESSAGE_KEYWORDS = ("database", "payment")
CONNECTION_ERROR_CODES = ("ECONNREFUSED", "ENOTFOUND")

RECENT_WINDOW = timedelta(hours=1)
DEFAULT_HISTORY_MAX_AGE_MS = 7 * 24 * 60 * 60 * 1000

ExecutionKey = Tuple[str, str]


def compute_retry_delay(policy: ErrorPolicy, retry_count: int) -> int:
    """Milliseconds to wait before retry number ``retry_count + 1``."""
    if policy.exponential_backoff:
        return policy.retry_delay_ms * 2 ** retry_count
    return policy.retry_delay_ms


@dataclass
class ReportedFailure:
    """Normalized view of whatever a caller reported as an execution failure."""

    message: str
    status_code: Optional[int] = None
    error_code: Optional[str] = None
    node_id: str = "unknown"
    node_name: str = "unknown"

    @classmethod
    def coerce(cls, error: Union["ReportedFailure", BaseException, Mapping[str, Any], str]) -> "ReportedFailure":
        if isinstance(error, ReportedFailure):
            return error
        if isinstance(error, BaseException):
            return cls.from_exception(error)
        if isinstance(error, Mapping):
            return cls.from_payload(error)
        return cls(message=str(error) or "Unknown error occurred")

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ReportedFailure":
        status_code = None
        error_code = None

        if isinstance(exc, RemoteWorkflowError):
            status_code = exc.status_code
            if exc.connection_failed:
                error_code = "ECONNREFUSED"
        elif isinstance(exc, httpx.HTTPStatusError):
            status_code = exc.response.status_code
        elif isinstance(exc, socket.gaierror):
            error_code = "ENOTFOUND"
        elif isinstance(exc, (ConnectionRefusedError, httpx.ConnectError)):
            error_code = "ECONNREFUSED"

        if status_code is None:
            status_code = _as_int(getattr(exc, "status_code", None) or getattr(exc, "status", None))
        if error_code is None and isinstance(getattr(exc, "code", None), str):
            error_code = exc.code

        node = getattr(exc, "node", None) or {}
        return cls(
            message=str(exc) or type(exc).__name__,
            status_code=status_code,
            error_code=error_code,
            node_id=str(node.get("id", "unknown")) if isinstance(node, Mapping) else "unknown",
            node_name=str(node.get("name", "unknown")) if isinstance(node, Mapping) else "unknown",
        )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ReportedFailure":
        """Build from an engine error object (``message``, ``httpCode``, ``node``...)."""
        node = payload.get("node") or {}
        if isinstance(node, str):
            node = {"name": node}
        elif not isinstance(node, Mapping):
            node = {}
        status = payload.get("httpCode", payload.get("statusCode", payload.get("status")))
        code = payload.get("code")
        return cls(
            message=str(payload.get("message") or "Unknown error occurred"),
            status_code=_as_int(status),
            error_code=code if isinstance(code, str) else None,
            node_id=str(node.get("id", "unknown")),
            node_name=str(node.get("name", "unknown")),
        )


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class ErrorClassifier:
    """Decides error type, criticality and policy category of a failure."""

    def __init__(
        self,
        critical_workflows: Sequence[str] = (),
        registry: Optional[TemplateRegistry] = None,
    ) -> None:
        self.critical_workflows = tuple(critical_workflows)
        self.registry = registry

    def classify(self, failure: ReportedFailure) -> ErrorType:
        status = failure.status_code
        if "timeout" in failure.message.lower():
            return ErrorType.TIMEOUT
        if failure.error_code in CONNECTION_ERROR_CODES:
            return ErrorType.CONNECTION
        if status is not None and 400 <= status < 500:
            return ErrorType.VALIDATION
        if (status is not None and status >= 500) or "API" in failure.message:
            return ErrorType.EXTERNAL_API
        return ErrorType.UNKNOWN

    def is_critical(self, failure: ReportedFailure, workflow_name: str) -> bool:
        if any(name in workflow_name for name in self.critical_workflows):
            return True
        message = failure.message.lower()
        if any(keyword in message for keyword in CRITICAL_MESSAGE_KEYWORDS):
            return True
        return failure.status_code is not None and failure.status_code >= 500

    def categorize(self, workflow_name: str) -> PolicyCategory:
        """Explicit template tag if the catalog declares one, else name inference."""
        if self.registry is not None:
            template = self.registry.find_by_workflow_name(workflow_name)
            if template is not None and template.policy_category is not None:
                return template.policy_category

        name = workflow_name.lower()
        for category, keywords in CATEGORY_KEYWORDS:
            if any(keyword in name for keyword in keywords):
                return category
        return PolicyCategory.DEFAULT

    @staticmethod
    def is_retryable(error: WorkflowError) -> bool:
        if error.error_type == ErrorType.VALIDATION:
            return False
        message = error.message.lower()
        return not any(keyword in message for keyword in NON_RETRYABLE_MESSAGES)


class AlertChannel:
    """Destination for administrator alerts."""

    name = "base"

    async def send(self, error: WorkflowError, severity: str) -> None:
        raise NotImplementedError


class LogAlertChannel(AlertChannel):
    """Writes alerts to the service log; works even when the engine is down."""

    name = "log"

    async def send(self, error: WorkflowError, severity: str) -> None:
        logger.critical(
            f"[{severity}] workflow {error.workflow_name} ({error.workflow_id}) "
            f"execution {error.execution_id} failed: {error.error_type.value}"
        )


class WorkflowAlertChannel(AlertChannel):
    """Triggers the engine's alert-notification workflow."""

    name = "workflow"

    def __init__(self, client: RemoteWorkflowClient, workflow_name: str) -> None:
        self.client = client
        self.workflow_name = workflow_name

    async def send(self, error: WorkflowError, severity: str) -> None:
        workflows = await self.client.list_workflows(active=True)
        target = next((w for w in workflows if w.name == self.workflow_name), None)
        if target is None or not target.id:
            raise LookupError(f"Alert workflow not active: {self.workflow_name}")

        await self.client.execute_workflow(
            target.id,
            {
                "error": error.model_dump(mode="json"),
                "severity": severity,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class RecoveryEngine:
    """
    Handles reported execution failures.

    Flow per failure: classify -> select policy -> determine actions ->
    run automated actions in order until one recovers -> escalate if nothing
    recovered and the failure is critical or retries are exhausted.

    Recovery of the same (workflow, execution) pair is serialized; different
    pairs run concurrently. The retry backoff is the only place the flow
    waits, and it holds no shared lock while waiting.
    """

    def __init__(
        self,
        client: RemoteWorkflowClient,
        settings: Optional[FlowguardSettings] = None,
        registry: Optional[TemplateRegistry] = None,
        policies: Optional[Mapping[PolicyCategory, ErrorPolicy]] = None,
        alert_channels: Optional[Sequence[AlertChannel]] = None,
    ) -> None:
        self.client = client
        self.settings = settings or get_settings()
        self.classifier = ErrorClassifier(self.settings.critical_workflows, registry)
        self._policies: Dict[PolicyCategory, ErrorPolicy] = {**DEFAULT_POLICIES, **(policies or {})}
        self.alert_channels: List[AlertChannel] = list(
            alert_channels
            if alert_channels is not None
            else [LogAlertChannel(), WorkflowAlertChannel(client, self.settings.alert_workflow)]
        )

        self._history: List[WorkflowError] = []
        self._retry_counts: Dict[ExecutionKey, int] = {}
        self._state_lock = asyncio.Lock()
        self._execution_locks: Dict[ExecutionKey, _KeyLock] = {}

    @property
    def history(self) -> List[WorkflowError]:
        return list(self._history)

    def retry_count(self, workflow_id: str, execution_id: str) -> int:
        return self._retry_counts.get((workflow_id, execution_id), 0)

    def get_policy(self, workflow_name: str) -> ErrorPolicy:
        category = self.classifier.categorize(workflow_name)
        return self._policies.get(category) or self._policies[PolicyCategory.DEFAULT]

    @asynccontextmanager
    async def _serialized(self, key: ExecutionKey) -> AsyncIterator[None]:
        entry = self._execution_locks.get(key)
        if entry is None:
            entry = self._execution_locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._execution_locks[key]

    async def handle_workflow_error(
        self,
        workflow_id: str,
        execution_id: str,
        error: Union[ReportedFailure, BaseException, Mapping[str, Any], str],
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorHandlingResult:
        """Classify a failure and run the recovery its policy prescribes."""
        try:
            async with self._serialized((workflow_id, execution_id)):
                return await self._handle(workflow_id, execution_id, error, context)
        except Exception as handling_error:
            logger.error(f"Error handler failed for {workflow_id}/{execution_id}: {handling_error}")
            synthetic = WorkflowError(
                workflow_id=workflow_id,
                workflow_name="unknown",
                execution_id=execution_id,
                message=f"Error handler failure: {handling_error}",
                retry_count=self.retry_count(workflow_id, execution_id),
                is_critical=True,
            )
            await self._escalate(synthetic, [])
            return ErrorHandlingResult(success=False, error=synthetic, recovery_actions=[], escalated=True)

    async def _handle(
        self,
        workflow_id: str,
        execution_id: str,
        error: Union[ReportedFailure, BaseException, Mapping[str, Any], str],
        context: Optional[Dict[str, Any]],
    ) -> ErrorHandlingResult:
        workflow_error = await self.parse_error(workflow_id, execution_id, error, context)
        async with self._state_lock:
            self._history.append(workflow_error)

        policy = self.get_policy(workflow_error.workflow_name)
        actions = self.determine_actions(workflow_error, policy)

        # Once retries are used up a restart still resubmits, but the failure
        # is not considered recovered and escalation still applies.
        exhausted = workflow_error.retry_count >= policy.max_retries
        success = False
        recovered_by: Optional[RecoveryActionType] = None
        for action in actions:
            if not action.automated:
                continue
            if recovered_by is not None:
                action.executed = True
                action.outcome = f"Not needed: recovered by {recovered_by.value}"
                continue

            ok, message = await self._execute_action(workflow_error, action, policy)
            action.executed = True
            action.outcome = message
            # Alerts notify; they do not recover the execution.
            if action.type == RecoveryActionType.ALERT:
                continue
            if action.type == RecoveryActionType.RESTART and exhausted:
                continue
            if ok:
                success = True
                recovered_by = action.type

        escalated = False
        if not success and self.should_escalate(workflow_error, policy):
            await self._escalate(workflow_error, actions)
            escalated = True

        logger.info(
            f"Error handling completed for {workflow_id}/{execution_id}: "
            f"success={success}, escalated={escalated}, "
            f"actions={sum(1 for a in actions if a.executed)}"
        )
        return ErrorHandlingResult(
            success=success, error=workflow_error, recovery_actions=actions, escalated=escalated
        )

    async def parse_error(
        self,
        workflow_id: str,
        execution_id: str,
        error: Union[ReportedFailure, BaseException, Mapping[str, Any], str],
        context: Optional[Dict[str, Any]] = None,
    ) -> WorkflowError:
        """Build the structured WorkflowError for a raw failure report."""
        failure = ReportedFailure.coerce(error)
        error_type = self.classifier.classify(failure)
        async with self._state_lock:
            retry_count = self._retry_counts.get((workflow_id, execution_id), 0)

        try:
            workflow = await self.client.get_workflow(workflow_id)
        except RemoteWorkflowError as e:
            logger.error(f"Could not look up failing workflow {workflow_id}: {e}")
            workflow_name = "unknown"
            is_critical = True
        else:
            workflow_name = workflow.name
            is_critical = self.classifier.is_critical(failure, workflow_name)

        return WorkflowError(
            workflow_id=workflow_id,
            workflow_name=workflow_name,
            execution_id=execution_id,
            node_id=failure.node_id,
            node_name=failure.node_name,
            message=failure.message,
            error_type=error_type,
            retry_count=retry_count,
            is_critical=is_critical,
            context=context,
        )

    def determine_actions(self, error: WorkflowError, policy: ErrorPolicy) -> List[RecoveryAction]:
        """Recovery actions for ``error``, in the order they are attempted."""
        actions = []

        if error.retry_count < policy.max_retries and self.classifier.is_retryable(error):
            actions.append(
                RecoveryAction(
                    type=RecoveryActionType.RETRY,
                    description=f"Retry workflow execution (attempt {error.retry_count + 1}/{policy.max_retries})",
                )
            )

        if policy.fallback_workflow_id and error.retry_count >= math.ceil(policy.max_retries / 2):
            actions.append(
                RecoveryAction(
                    type=RecoveryActionType.FALLBACK,
                    description=f"Execute fallback workflow: {policy.fallback_workflow_id}",
                )
            )

        if not error.is_critical and error.error_type != ErrorType.VALIDATION:
            actions.append(
                RecoveryAction(
                    type=RecoveryActionType.SKIP,
                    description="Skip failed node and continue workflow",
                )
            )

        if error.is_critical and policy.auto_restart:
            actions.append(
                RecoveryAction(type=RecoveryActionType.RESTART, description="Restart entire workflow")
            )

        if self.should_alert(error, policy):
            actions.append(
                RecoveryAction(type=RecoveryActionType.ALERT, description="Send alert to administrators")
            )

        return actions

    @staticmethod
    def should_alert(error: WorkflowError, policy: ErrorPolicy) -> bool:
        return error.retry_count >= policy.alert_threshold or error.is_critical

    @staticmethod
    def should_escalate(error: WorkflowError, policy: ErrorPolicy) -> bool:
        return error.retry_count >= policy.max_retries or error.is_critical

    async def _execute_action(
        self, error: WorkflowError, action: RecoveryAction, policy: ErrorPolicy
    ) -> Tuple[bool, str]:
        try:
            if action.type == RecoveryActionType.RETRY:
                return await self._retry(error, policy)

            if action.type == RecoveryActionType.FALLBACK:
                if not policy.fallback_workflow_id:
                    return False, "No fallback workflow configured"
                fallback_input = {**(error.context or {}), "originalError": error.model_dump(mode="json")}
                execution = await self.client.execute_workflow(policy.fallback_workflow_id, fallback_input)
                logger.info(
                    f"Fallback workflow {policy.fallback_workflow_id} executed for "
                    f"{error.workflow_id} (execution {execution.id})"
                )
                return True, f"Fallback executed: {execution.id}"

            if action.type == RecoveryActionType.SKIP:
                # The engine offers no resume-after-node call; nothing is resubmitted.
                logger.info(f"Node skipped, continuing workflow: {error.workflow_id} node {error.node_id}")
                return True, "Node skipped successfully"

            if action.type == RecoveryActionType.RESTART:
                execution = await self.client.execute_workflow(error.workflow_id, error.context)
                logger.info(f"Workflow restarted: {error.workflow_id} (execution {execution.id})")
                return True, f"Workflow restarted: {execution.id}"

            if action.type == RecoveryActionType.ALERT:
                if await self.send_alert(error):
                    return True, "Alert sent to administrators"
                return False, "Alert could not be delivered"

            return False, f"Unknown recovery action: {action.type}"

        except Exception as e:
            logger.error(f"Recovery action {action.type.value} failed for {error.workflow_id}: {e}")
            return False, f"Action failed: {e}"

    async def _retry(self, error: WorkflowError, policy: ErrorPolicy) -> Tuple[bool, str]:
        key = (error.workflow_id, error.execution_id)
        async with self._state_lock:
            attempt = max(self._retry_counts.get(key, 0), error.retry_count) + 1
            self._retry_counts[key] = attempt

        delay_ms = compute_retry_delay(policy, error.retry_count)
        logger.info(
            f"Retrying workflow {error.workflow_id} in {delay_ms}ms "
            f"(attempt {attempt}/{policy.max_retries})"
        )
        await asyncio.sleep(delay_ms / 1000)

        execution = await self.client.execute_workflow(error.workflow_id, error.context)
        logger.info(f"Workflow retry executed: {error.workflow_id} (execution {execution.id}, attempt {attempt})")
        return True, f"Retry successful: {execution.id}"

    async def send_alert(self, error: WorkflowError) -> bool:
        """Deliver an alert on every channel; True if at least one succeeded.

        Safe to call more than once for the same error.
        """
        severity = "critical" if error.is_critical else "warning"
        delivered = False
        for channel in self.alert_channels:
            try:
                await channel.send(error, severity)
                delivered = True
            except Exception as e:
                logger.error(f"Failed to send error alert via {channel.name}: {e}")
        if delivered:
            logger.info(f"Error alert sent for workflow {error.workflow_id}")
        return delivered

    async def _escalate(self, error: WorkflowError, actions: List[RecoveryAction]) -> None:
        logger.error(
            f"Error escalated to administrators: {error.workflow_id} "
            f"({error.error_type.value}, critical={error.is_critical}, "
            f"actions attempted={sum(1 for a in actions if a.executed)})"
        )
        await self.send_alert(error)

        escalation = error.model_copy(
            update={"message": f"ESCALATED: {error.message}", "is_critical": True}
        )
        async with self._state_lock:
            self._history.append(escalation)

    def get_error_statistics(self) -> ErrorStatistics:
        now = datetime.now(timezone.utc)
        by_type: Dict[str, int] = {}
        by_workflow: Dict[str, int] = {}
        for error in self._history:
            by_type[error.error_type.value] = by_type.get(error.error_type.value, 0) + 1
            by_workflow[error.workflow_name] = by_workflow.get(error.workflow_name, 0) + 1

        return ErrorStatistics(
            total_errors=len(self._history),
            critical_errors=sum(1 for e in self._history if e.is_critical),
            recent_errors=sum(1 for e in self._history if now - e.timestamp < RECENT_WINDOW),
            errors_by_type=by_type,
            errors_by_workflow=by_workflow,
        )

    async def cleanup(self, max_age_ms: int = DEFAULT_HISTORY_MAX_AGE_MS) -> int:
        """Drop history entries older than ``max_age_ms``; returns how many were removed.

        Retry counters of executions that still have history are kept, so they
        stay monotonic while an execution keeps failing. Counters of executions
        with no remaining history are dropped with it, which bounds them by the
        executions reported within ``max_age_ms``.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(milliseconds=max_age_ms)
        async with self._state_lock:
            before = len(self._history)
            self._history = [e for e in self._history if e.timestamp > cutoff]
            removed = before - len(self._history)

            live = {(e.workflow_id, e.execution_id) for e in self._history}
            for key in [k for k in self._retry_counts if k not in live and k not in self._execution_locks]:
                del self._retry_counts[key]

        logger.info(f"Error history cleaned up: {removed} removed, {len(self._history)} remaining")
        return removed
