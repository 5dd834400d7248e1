"""Inbound webhook handlers that translate provider payloads into workflow runs."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from loguru import logger

from ..models.webhook import WebhookDispatch, WebhookResponse
from ..models.workflow import WorkflowExecution
from ..remote.client import RemoteWorkflowClient

CONFIRMATION_WORKFLOWS = {
    "confirm": "appointment-confirmation",
    "cancel": "appointment-cancellation",
    "reschedule": "appointment-rescheduling",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class BaseWebhookHandler(ABC):
    """Common validation and triggering for webhook handlers.

    Subclasses implement :meth:`handle`; a handler never raises, every
    failure becomes an unsuccessful :class:`WebhookResponse`.
    """

    def __init__(self, client: RemoteWorkflowClient) -> None:
        self.client = client

    @abstractmethod
    async def handle(self, payload: Dict[str, Any]) -> WebhookResponse:
        ...

    @staticmethod
    def validate_payload(payload: Dict[str, Any], required_fields: List[str]) -> List[str]:
        return [f"Missing required field: {field}" for field in required_fields if not payload.get(field)]

    async def trigger_workflow(self, dispatch: WebhookDispatch) -> WorkflowExecution:
        """Execute the active workflow named by ``dispatch``.

        Raises:
            LookupError: if no active workflow carries that name
            RemoteWorkflowError: if the engine rejects the call
        """
        workflows = await self.client.list_workflows(active=True)
        target = next((w for w in workflows if w.name == dispatch.workflow_name), None)
        if target is None or not target.id:
            raise LookupError(f"Workflow not found: {dispatch.workflow_name}")

        execution = await self.client.execute_workflow(target.id, dispatch.data)
        logger.info(f"Webhook triggered workflow {dispatch.workflow_name} (execution {execution.id})")
        return execution


class CalendarSyncWebhookHandler(BaseWebhookHandler):
    """Calendar change notifications -> ``google-calendar-sync``."""

    async def handle(self, payload: Dict[str, Any]) -> WebhookResponse:
        errors = self.validate_payload(payload, ["resourceId", "resourceUri"])
        if errors:
            return WebhookResponse(success=False, message="Invalid payload", errors=errors)

        try:
            execution = await self.trigger_workflow(
                WebhookDispatch(
                    workflow_name="google-calendar-sync",
                    data={
                        "resourceId": payload["resourceId"],
                        "resourceUri": payload["resourceUri"],
                        "channelId": payload.get("channelId"),
                        "channelToken": payload.get("channelToken"),
                        "changeType": self.determine_change_type(payload),
                        "timestamp": _now(),
                    },
                )
            )
        except Exception as e:
            logger.error(f"Calendar webhook processing failed: {e}")
            return WebhookResponse(success=False, message="Webhook processing failed", errors=[str(e)])

        return WebhookResponse(
            success=True,
            message="Calendar webhook processed successfully",
            data={"executionId": execution.id},
        )

    @staticmethod
    def determine_change_type(payload: Dict[str, Any]) -> str:
        event_type = payload.get("eventType")
        return event_type if event_type in ("created", "updated", "deleted") else "unknown"


class MessagingWebhookHandler(BaseWebhookHandler):
    """Messaging provider callbacks; every inbound message triggers a response workflow."""

    async def handle(self, payload: Dict[str, Any]) -> WebhookResponse:
        errors = self.validate_payload(payload, ["entry"])
        if errors:
            return WebhookResponse(success=False, message="Invalid messaging webhook payload", errors=errors)

        responses: List[Dict[str, Any]] = []
        try:
            for entry in payload["entry"]:
                for change in entry.get("changes") or []:
                    value = change.get("value") or {}
                    if change.get("field") == "messages":
                        for message in value.get("messages") or []:
                            responses.append(await self.process_message(message, value))
                    elif change.get("field") == "message_template_status_update":
                        logger.info(f"Message template status update: {value.get('event', 'unknown')}")
        except Exception as e:
            logger.error(f"Messaging webhook processing failed: {e}")
            return WebhookResponse(
                success=False, message="Messaging webhook processing failed", errors=[str(e)]
            )

        return WebhookResponse(
            success=True,
            message="Messaging webhook processed successfully",
            data={"responses": responses},
        )

    async def process_message(self, message: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        message_type = message.get("type")
        if message_type == "interactive":
            workflow_name = "whatsapp-interactive-response"
        elif message_type == "text":
            workflow_name = "whatsapp-text-response"
        else:
            return {"processed": False, "reason": "Unsupported message type"}

        data = {
            "messageId": message.get("id"),
            "from": message.get("from"),
            "timestamp": message.get("timestamp"),
            "type": message_type,
            "text": (message.get("text") or {}).get("body"),
            "interactive": message.get("interactive"),
            "context": context.get("metadata"),
            "contacts": context.get("contacts"),
        }
        execution = await self.trigger_workflow(WebhookDispatch(workflow_name=workflow_name, data=data))
        return {"processed": True, "executionId": execution.id}


class PaymentWebhookHandler(BaseWebhookHandler):
    """Payment gateway notifications -> ``process-payment``."""

    async def handle(self, payload: Dict[str, Any]) -> WebhookResponse:
        errors = self.validate_payload(payload, ["id", "status"])
        if errors:
            return WebhookResponse(success=False, message="Invalid payment webhook payload", errors=errors)

        metadata = payload.get("metadata") or {}
        try:
            execution = await self.trigger_workflow(
                WebhookDispatch(
                    workflow_name="process-payment",
                    data={
                        "paymentId": payload["id"],
                        "status": payload["status"],
                        "amount": payload.get("amount"),
                        "currency": payload.get("currency"),
                        "patientId": metadata.get("patient_id"),
                        "appointmentId": metadata.get("appointment_id"),
                        "timestamp": payload.get("created") or _now(),
                    },
                )
            )
        except Exception as e:
            logger.error(f"Payment webhook processing failed: {e}")
            return WebhookResponse(success=False, message="Payment webhook processing failed", errors=[str(e)])

        return WebhookResponse(
            success=True,
            message="Payment webhook processed successfully",
            data={"executionId": execution.id},
        )


class AppointmentConfirmationWebhookHandler(BaseWebhookHandler):
    async def handle(self, payload: Dict[str, Any]) -> WebhookResponse:
        errors = self.validate_payload(payload, ["appointmentId", "action"])
        if errors:
            return WebhookResponse(
                success=False, message="Invalid confirmation webhook payload", errors=errors
            )

        action = payload["action"]
        try:
            workflow_name = CONFIRMATION_WORKFLOWS.get(action)
            if workflow_name is None:
                raise ValueError(f"Unsupported action: {action}")

            execution = await self.trigger_workflow(
                WebhookDispatch(
                    workflow_name=workflow_name,
                    data={
                        "appointmentId": payload["appointmentId"],
                        "action": action,
                        "patientId": payload.get("patientId"),
                        "confirmationCode": payload.get("confirmationCode"),
                        "source": payload.get("source") or "external",
                        "timestamp": _now(),
                        "additionalData": payload.get("additionalData") or {},
                    },
                )
            )
        except Exception as e:
            logger.error(f"Appointment confirmation webhook processing failed: {e}")
            return WebhookResponse(
                success=False, message="Appointment confirmation processing failed", errors=[str(e)]
            )

        return WebhookResponse(
            success=True,
            message="Appointment confirmation processed successfully",
            data={"executionId": execution.id, "action": action},
        )


class WebhookRouter:
    """Registry of webhook handlers keyed by webhook type."""

    def __init__(
        self,
        client: RemoteWorkflowClient,
        handlers: Optional[Dict[str, BaseWebhookHandler]] = None,
    ) -> None:
        self.client = client
        self.handlers: Dict[str, BaseWebhookHandler] = handlers or {
            "calendar-sync": CalendarSyncWebhookHandler(client),
            "messaging-provider": MessagingWebhookHandler(client),
            "payment": PaymentWebhookHandler(client),
            "appointment-confirmation": AppointmentConfirmationWebhookHandler(client),
        }

    async def handle_webhook(self, webhook_type: str, payload: Dict[str, Any]) -> WebhookResponse:
        handler = self.handlers.get(webhook_type)
        if handler is None:
            logger.error(f"Unknown webhook type: {webhook_type}")
            return WebhookResponse(
                success=False,
                message=f"Unknown webhook type: {webhook_type}",
                errors=["Unsupported webhook type"],
            )

        logger.info(f"Processing {webhook_type} webhook")
        return await handler.handle(payload)

    def get_registered_types(self) -> List[str]:
        return list(self.handlers.keys())
