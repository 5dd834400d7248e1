"""Error reporting and recovery endpoints."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status
from loguru import logger

from ..models.errors import ErrorHandlingResult, ErrorReport, ErrorStatistics
from ..remote.client import RemoteWorkflowClient
from ..workflows.recovery import RecoveryEngine, ReportedFailure

router = APIRouter(prefix="/api/v1/errors", tags=["errors"])

# Global instance (initialized on first request)
_engine: Optional[RecoveryEngine] = None


def get_recovery_engine() -> RecoveryEngine:
    """Get or create the recovery engine instance."""
    global _engine

    if not _engine:
        _engine = RecoveryEngine(RemoteWorkflowClient())

    return _engine


@router.post(
    "/report",
    response_model=ErrorHandlingResult,
    summary="Report a failed execution",
)
async def report_error(report: ErrorReport) -> ErrorHandlingResult:
    """
    Classify a failed execution and run its recovery policy.

    The call returns once recovery finished, which includes any retry
    backoff. Failures of the same workflow execution are handled one at a
    time in arrival order.
    """
    failure = ReportedFailure(
        message=report.message,
        status_code=report.status_code,
        error_code=report.error_code,
        node_id=report.node_id or "unknown",
        node_name=report.node_name or "unknown",
    )
    result = await get_recovery_engine().handle_workflow_error(
        report.workflow_id, report.execution_id, failure, report.context
    )
    logger.info(
        f"Error report for {report.workflow_id}/{report.execution_id} handled: "
        f"success={result.success}, escalated={result.escalated}"
    )
    return result


@router.get("/statistics", response_model=ErrorStatistics, summary="Error statistics")
async def get_statistics() -> ErrorStatistics:
    return get_recovery_engine().get_error_statistics()


@router.post("/cleanup", summary="Drop old error history")
async def cleanup(
    max_age_ms: int = Query(default=7 * 24 * 60 * 60 * 1000, gt=0),
) -> dict:
    try:
        removed = await get_recovery_engine().cleanup(max_age_ms)
    except Exception as e:
        logger.error(f"Error history cleanup failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Cleanup failed: {str(e)}",
        )

    return {"removed": removed}
