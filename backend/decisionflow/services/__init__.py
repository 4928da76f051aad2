"""Services for Decision Flow Studio."""

from decisionflow.services.execution_service import ExecutionService, project_key_of

__all__ = ["ExecutionService", "project_key_of"]
