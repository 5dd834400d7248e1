"""Inbound webhook endpoint."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body
from fastapi.responses import JSONResponse
from loguru import logger

from ..remote.client import RemoteWorkflowClient
from ..webhooks.handlers import WebhookRouter

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

# Global instance (initialized on first request)
_webhook_router: Optional[WebhookRouter] = None


def get_webhook_router() -> WebhookRouter:
    """Get or create the webhook router instance."""
    global _webhook_router

    if not _webhook_router:
        _webhook_router = WebhookRouter(RemoteWorkflowClient())

    return _webhook_router


@router.get("", summary="List supported webhook types")
async def list_webhook_types() -> dict:
    return {"types": get_webhook_router().get_registered_types()}


@router.post("/{webhook_type}", summary="Receive a webhook")
async def receive_webhook(webhook_type: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    """Dispatch the payload; 200 when handled, 400 otherwise."""
    logger.info(f"Webhook received: {webhook_type}")
    result = await get_webhook_router().handle_webhook(webhook_type, payload)
    return JSONResponse(
        status_code=200 if result.success else 400,
        content=result.model_dump(exclude_none=True),
    )
