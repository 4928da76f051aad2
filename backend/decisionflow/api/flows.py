"""Flow administration API routes."""

from datetime import date, datetime

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from decisionflow.db import flow_store
from decisionflow.engine.validator import FlowValidationResult, validate_flow
from decisionflow.errors import DateExpressionError
from decisionflow.expressions import (
    DateExpression,
    ParseError,
    evaluate_date_expression,
    parse_date_expression,
)
from decisionflow.models import FlowCreate, FlowDefinition, FlowSummary

router = APIRouter()


class ParseExpressionRequest(BaseModel):
    """Request to check a date expression while editing a flow."""

    expression: str | None = None
    now: datetime | date | None = None


class ParseExpressionResponse(BaseModel):
    """Parse result with a preview of the date it evaluates to."""

    valid: bool
    expression: DateExpression | None = None
    canonical: str | None = None
    error: ParseError | None = None
    preview: date | None = None


def _draft(data: FlowCreate, flow_id: str = "draft") -> FlowDefinition:
    return FlowDefinition(
        id=flow_id,
        name=data.name,
        description=data.description,
        nodes=data.nodes,
        edges=data.edges,
        project_keys=data.project_keys,
    )


def _reject_invalid(validation: FlowValidationResult) -> None:
    if validation.errors:
        raise HTTPException(
            status_code=422,
            detail={
                "message": "Flow has validation errors",
                "issues": [i.model_dump(by_alias=True) for i in validation.errors],
            },
        )


# ==================== Flows ====================


@router.get("/flows")
async def list_flows() -> list[FlowSummary]:
    """List all flows."""
    return await flow_store.list_flows()


@router.post("/flows", status_code=201)
async def create_flow(data: FlowCreate) -> FlowDefinition:
    """Create a flow. Flows with validation errors are rejected."""
    _reject_invalid(validate_flow(_draft(data)))
    return await flow_store.create_flow(data)


@router.post("/flows/validate")
async def validate_flow_definition(data: FlowCreate) -> FlowValidationResult:
    """Validate a flow definition without saving it."""
    return validate_flow(_draft(data))


@router.get("/flows/{flow_id}")
async def get_flow(flow_id: str) -> FlowDefinition:
    """Get a flow definition."""
    flow = await flow_store.get_flow(flow_id)
    if flow is None:
        raise HTTPException(status_code=404, detail="Flow not found")
    return flow


@router.put("/flows/{flow_id}")
async def update_flow(flow_id: str, data: FlowCreate) -> FlowDefinition:
    """Replace a flow definition."""
    _reject_invalid(validate_flow(_draft(data, flow_id)))
    flow = await flow_store.update_flow(flow_id, data)
    if flow is None:
        raise HTTPException(status_code=404, detail="Flow not found")
    return flow


@router.delete("/flows/{flow_id}")
async def delete_flow(flow_id: str) -> dict[str, bool]:
    """Delete a flow and its executions."""
    deleted = await flow_store.delete_flow(flow_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Flow not found")
    return {"deleted": True}


# ==================== Expressions ====================


@router.post("/expressions/parse")
async def parse_expression(request: ParseExpressionRequest) -> ParseExpressionResponse:
    """Parse a date expression and preview its value.

    Never fails on bad input; syntax problems come back in ``error``.
    """
    result = parse_date_expression(request.expression)
    if result.expression is None:
        return ParseExpressionResponse(valid=False, error=result.error)

    now = request.now or datetime.now()
    try:
        preview = evaluate_date_expression(result.expression, now)
    except DateExpressionError as e:
        return ParseExpressionResponse(
            valid=False,
            expression=result.expression,
            canonical=str(result.expression),
            error=e.error,
        )
    return ParseExpressionResponse(
        valid=True,
        expression=result.expression,
        canonical=str(result.expression),
        preview=preview,
    )
