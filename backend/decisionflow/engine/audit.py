"""Best-effort audit logging for flow executions."""

from __future__ import annotations

import logging
from typing import Protocol

from decisionflow.models.audit import AuditLogEntry

logger = logging.getLogger(__name__)


class AuditStore(Protocol):
    async def append_audit_entry(self, entry: AuditLogEntry) -> None: ...

    async def list_audit_entries(self, record_id: str, flow_id: str) -> list[AuditLogEntry]: ...


class AuditLogger:
    """Appends audit entries without ever failing the caller.

    A failed append loses a diagnostic record, not a state transition, so
    store errors are logged and swallowed here. Entries are written in the
    order given and never deduplicated.
    """

    def __init__(self, store: AuditStore) -> None:
        self._store = store

    async def append(self, entry: AuditLogEntry) -> bool:
        """Append one entry. Returns False if the store rejected it."""
        try:
            await self._store.append_audit_entry(entry)
            return True
        except Exception as e:
            logger.exception(
                f"Failed to append audit entry for {entry.record_id}/{entry.flow_id} "
                f"at node {entry.node_id}: {e}"
            )
            return False

    async def append_many(self, entries: list[AuditLogEntry]) -> int:
        """Append entries in order. Returns how many were written."""
        written = 0
        for entry in entries:
            if await self.append(entry):
                written += 1
        return written

    async def list(self, record_id: str, flow_id: str) -> list[AuditLogEntry]:
        """List entries for a record and flow in insertion order."""
        return await self._store.list_audit_entries(record_id, flow_id)
