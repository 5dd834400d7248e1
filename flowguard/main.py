"""FastAPI entry point for the workflow orchestration service."""

from typing import Dict, Optional

from fastapi import FastAPI

from .config import SERVICE_VERSION, FlowguardSettings, get_settings
from .routers import deployments, errors, webhooks


def create_app(settings: Optional[FlowguardSettings] = None) -> FastAPI:
    """Create a FastAPI application exposing deployment, recovery and webhook routes."""

    resolved_settings = settings or get_settings()

    app = FastAPI(title=resolved_settings.app_name, version=SERVICE_VERSION)

    app.include_router(deployments.router)
    app.include_router(errors.router)
    app.include_router(webhooks.router)

    @app.get("/health", tags=["health"])
    def health_check() -> Dict[str, str]:
        """Report service status and the engine it targets."""

        return {
            "status": "ok",
            "service": resolved_settings.app_name,
            "engine": resolved_settings.base_url,
        }

    @app.get("/ready", tags=["health"])
    def readiness_check() -> Dict[str, object]:
        """Readiness check endpoint for Kubernetes."""

        return {
            "status": "ready",
            "service": resolved_settings.app_name,
            "version": SERVICE_VERSION,
            "environment": resolved_settings.environment,
        }

    return app


app = create_app()
