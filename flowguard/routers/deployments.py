"""Deployment API endpoints."""

from typing import Optional

from fastapi import APIRouter, HTTPException, status
from loguru import logger

from ..models.deployment import (
    DeploymentConfig,
    DeploymentResult,
    DeploymentStatus,
    DeploymentValidation,
    HealthReport,
)
from ..remote.client import RemoteWorkflowClient
from ..workflows.deployment import DeploymentManager

router = APIRouter(prefix="/api/v1/deployments", tags=["deployments"])

# Global instance (initialized on first request)
_manager: Optional[DeploymentManager] = None


def get_deployment_manager() -> DeploymentManager:
    """Get or create the deployment manager instance."""
    global _manager

    if not _manager:
        _manager = DeploymentManager(RemoteWorkflowClient())

    return _manager


@router.post(
    "",
    response_model=DeploymentResult,
    summary="Deploy the workflow catalog to the engine",
)
async def deploy(config: DeploymentConfig) -> DeploymentResult:
    """
    Run the complete deployment.

    Connectivity and catalog validation abort the run before anything is
    pushed (unless ``skip_validation``). Individual template failures are
    reported in ``failed`` and ``errors`` without stopping the batch.
    """
    manager = get_deployment_manager()
    result = await manager.deploy_complete(config)
    logger.info(f"Deployment request finished: success={result.success}")
    return result


@router.get("/validate", response_model=DeploymentValidation, summary="Validate deployment health")
async def validate_deployment() -> DeploymentValidation:
    return await get_deployment_manager().validate_deployment()


@router.get("/status", response_model=DeploymentStatus, summary="Get deployment status")
async def get_status() -> DeploymentStatus:
    return await get_deployment_manager().get_deployment_status()


@router.get("/health", response_model=HealthReport, summary="Health of deployed workflows")
async def deployed_health() -> HealthReport:
    return await get_deployment_manager().orchestrator.health_check()


@router.post("/cleanup", summary="Remove test executions")
async def cleanup() -> dict:
    """Delete executions that were started with synthetic test data."""
    try:
        removed = await get_deployment_manager().cleanup()
    except Exception as e:
        logger.error(f"Deployment cleanup failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Cleanup failed: {str(e)}",
        )

    return {"removed": removed, "message": "Test executions removed"}
