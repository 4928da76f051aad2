"""Execution service - runs flows against records and persists the results.

Wraps the stateless FlowStateMachine with loading and saving of execution
state, per-(record, flow) mutual exclusion and audit logging.
"""

from __future__ import annotations

import asyncio
import logging
import os
import weakref
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from decisionflow.db.flow_store import FlowNotFoundError
from decisionflow.engine.audit import AuditLogger
from decisionflow.engine.collaborators import (
    ActionExecutor,
    FieldMetadataProvider,
    FieldReader,
)
from decisionflow.engine.state_machine import (
    DEFAULT_MAX_HOPS,
    AdvanceResult,
    ExecutionContext,
    FlowStateMachine,
)
from decisionflow.models import (
    Answer,
    AuditLogEntry,
    ExecutionState,
    FlowDefinition,
    FlowSummary,
)

if TYPE_CHECKING:
    from decisionflow.db.flow_store import FlowStore

logger = logging.getLogger(__name__)


def project_key_of(record_id: str) -> str:
    """Project key of a record key, e.g. ``PROJ`` for ``PROJ-123``."""
    return record_id.split("-", 1)[0]


def max_hops_from_env() -> int:
    value = os.getenv("FLOW_MAX_HOPS")
    if not value:
        return DEFAULT_MAX_HOPS
    try:
        return max(1, int(value))
    except ValueError:
        logger.warning(f"Ignoring invalid FLOW_MAX_HOPS={value!r}")
        return DEFAULT_MAX_HOPS


class ExecutionService:
    """Runs flow executions for records."""

    def __init__(
        self,
        store: FlowStore,
        field_reader: FieldReader | None = None,
        action_executor: ActionExecutor | None = None,
        field_metadata: FieldMetadataProvider | None = None,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] = datetime.now,
        max_hops: int | None = None,
    ) -> None:
        self._store = store
        self._field_reader = field_reader
        self._action_executor = action_executor
        self._field_metadata = field_metadata
        self._audit = audit_logger or AuditLogger(store)
        self._clock = clock
        self._max_hops = max_hops if max_hops is not None else max_hops_from_env()
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, record_id: str, flow_id: str) -> asyncio.Lock:
        key = (record_id, flow_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _require_flow(self, flow_id: str) -> FlowDefinition:
        flow = await self._store.get_flow(flow_id)
        if flow is None:
            raise FlowNotFoundError(flow_id)
        return flow

    async def get_state(self, record_id: str, flow_id: str) -> ExecutionState:
        """Get the stored state, or a fresh not-started one."""
        await self._require_flow(flow_id)
        state = await self._store.get_execution_state(record_id, flow_id)
        return state or ExecutionState.initial(record_id, flow_id)

    async def advance(
        self, record_id: str, flow_id: str, answer: Answer | None = None
    ) -> AdvanceResult:
        """Run one pass of a flow on a record and persist the outcome.

        Raises:
            FlowNotFoundError: If the flow does not exist
            ConcurrentModificationError: If another writer saved the state first
        """
        async with self._lock_for(record_id, flow_id):
            flow = await self._require_flow(flow_id)
            state = await self._store.get_execution_state(record_id, flow_id)
            if state is None:
                state = ExecutionState.initial(record_id, flow_id)

            machine = FlowStateMachine(
                ExecutionContext(
                    record_id=record_id,
                    now=self._clock(),
                    field_reader=self._field_reader,
                    action_executor=self._action_executor,
                    field_metadata=self._field_metadata,
                    max_hops=self._max_hops,
                )
            )
            result = await machine.advance(state, flow, answer)

            if not result.accepted or result.state is state:
                return result

            saved = await self._store.save_execution_state(result.state)
            await self._audit.append_many(result.audit_entries)

        logger.info(
            f"Advanced {flow_id} on {record_id}: {state.status.value} -> {saved.status.value}"
        )
        return result.model_copy(update={"state": saved})

    async def reset(self, record_id: str, flow_id: str) -> ExecutionState:
        """Discard the execution so the flow starts over on the next advance."""
        async with self._lock_for(record_id, flow_id):
            await self._require_flow(flow_id)
            await self._store.delete_execution_state(record_id, flow_id)
        logger.info(f"Reset {flow_id} on {record_id}")
        return ExecutionState.initial(record_id, flow_id)

    async def flows_for_record(self, record_id: str) -> list[FlowSummary]:
        """List the flows offered on a record's project."""
        return await self._store.list_flows_for_project(project_key_of(record_id))

    async def list_audit(self, record_id: str, flow_id: str) -> list[AuditLogEntry]:
        await self._require_flow(flow_id)
        return await self._audit.list(record_id, flow_id)
