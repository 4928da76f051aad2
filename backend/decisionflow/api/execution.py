"""Flow execution API routes, scoped to a record."""

from functools import lru_cache

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel

from decisionflow.connectors import JiraConnector
from decisionflow.db import ConcurrentModificationError, FlowNotFoundError, flow_store
from decisionflow.engine.state_machine import AdvanceResult
from decisionflow.models import Answer, AuditLogEntry, ExecutionState, FlowSummary
from decisionflow.services import ExecutionService

router = APIRouter()


class AuditLogResponse(BaseModel):
    """Audit trail of one flow on one record."""

    entries: list[AuditLogEntry]
    total: int


@lru_cache
def _jira() -> JiraConnector:
    return JiraConnector()


async def close_connectors() -> None:
    """Close the shared Jira client, if one was created."""
    if _jira.cache_info().currsize:
        await _jira().aclose()
        _jira.cache_clear()


def get_execution_service() -> ExecutionService:
    """Build the execution service backed by Jira and the flow store."""
    jira = _jira()
    return ExecutionService(
        flow_store,
        field_reader=jira,
        action_executor=jira,
        field_metadata=jira,
    )


@router.get("/records/{record_id}/flows")
async def list_record_flows(
    record_id: str,
    service: ExecutionService = Depends(get_execution_service),
) -> list[FlowSummary]:
    """List flows offered on a record's project."""
    return await service.flows_for_record(record_id)


@router.get("/records/{record_id}/flows/{flow_id}/state")
async def get_state(
    record_id: str,
    flow_id: str,
    service: ExecutionService = Depends(get_execution_service),
) -> ExecutionState:
    """Get the execution state of a flow on a record."""
    try:
        return await service.get_state(record_id, flow_id)
    except FlowNotFoundError:
        raise HTTPException(status_code=404, detail="Flow not found")


@router.post("/records/{record_id}/flows/{flow_id}/advance")
async def advance(
    record_id: str,
    flow_id: str,
    answer: Answer | None = Body(default=None),
    service: ExecutionService = Depends(get_execution_service),
) -> AdvanceResult:
    """Start or continue a flow, optionally answering the awaited question."""
    try:
        result = await service.advance(record_id, flow_id, answer)
    except FlowNotFoundError:
        raise HTTPException(status_code=404, detail="Flow not found")
    except ConcurrentModificationError as e:
        raise HTTPException(status_code=409, detail=str(e))

    if not result.accepted:
        raise HTTPException(
            status_code=422,
            detail={
                "message": "Answer rejected",
                "validationErrors": result.validation_errors,
                "state": result.state.model_dump(mode="json", by_alias=True),
            },
        )
    return result


@router.post("/records/{record_id}/flows/{flow_id}/reset")
async def reset(
    record_id: str,
    flow_id: str,
    service: ExecutionService = Depends(get_execution_service),
) -> ExecutionState:
    """Reset a flow on a record back to not started."""
    try:
        return await service.reset(record_id, flow_id)
    except FlowNotFoundError:
        raise HTTPException(status_code=404, detail="Flow not found")


@router.get("/records/{record_id}/flows/{flow_id}/audit")
async def get_audit_log(
    record_id: str,
    flow_id: str,
    service: ExecutionService = Depends(get_execution_service),
) -> AuditLogResponse:
    """Get the audit trail of a flow on a record."""
    try:
        entries = await service.list_audit(record_id, flow_id)
    except FlowNotFoundError:
        raise HTTPException(status_code=404, detail="Flow not found")
    return AuditLogResponse(entries=entries, total=len(entries))
