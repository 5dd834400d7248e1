"""Client for the remote workflow-execution engine."""

from .client import RemoteWorkflowClient, RemoteWorkflowError

__all__ = ["RemoteWorkflowClient", "RemoteWorkflowError"]
