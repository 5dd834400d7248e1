"""Inbound webhook dispatch schemas."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class WebhookDispatch(BaseModel):
    """Translation of an inbound payload into a workflow trigger."""

    workflow_name: str
    data: Dict[str, Any] = Field(default_factory=dict)


class WebhookResponse(BaseModel):
    """Result returned to the caller that delivered the webhook."""

    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None
    errors: Optional[List[str]] = None
