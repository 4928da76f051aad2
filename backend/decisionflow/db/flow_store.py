"""FlowStore - Storage for flows, execution states and the audit trail."""

import json
import logging
import uuid
from datetime import datetime, timezone

import aiosqlite

from decisionflow.db.database import get_db
from decisionflow.models import (
    AuditLogEntry,
    ExecutionState,
    FlowCreate,
    FlowDefinition,
    FlowSummary,
)

logger = logging.getLogger(__name__)


class FlowNotFoundError(Exception):
    """Raised when a flow does not exist."""

    def __init__(self, flow_id: str):
        super().__init__(f"Flow '{flow_id}' not found")
        self.flow_id = flow_id


class ConcurrentModificationError(Exception):
    """Raised when an execution state changed since it was loaded."""

    def __init__(self, record_id: str, flow_id: str, expected_version: int):
        super().__init__(
            f"Execution state for {record_id}/{flow_id} was modified concurrently "
            f"(expected version {expected_version})"
        )
        self.record_id = record_id
        self.flow_id = flow_id
        self.expected_version = expected_version


def _generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def _now() -> str:
    """Get current timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


class FlowStore:
    """Storage abstraction for flow definitions and their executions."""

    # ==================== Flows ====================

    async def create_flow(self, data: FlowCreate) -> FlowDefinition:
        """Create a new flow."""
        db = await get_db()
        now = _now()

        flow = FlowDefinition(
            id=_generate_id(),
            name=data.name,
            description=data.description,
            nodes=data.nodes,
            edges=data.edges,
            project_keys=data.project_keys,
            created_at=now,
            updated_at=now,
        )

        await db.execute(
            """
            INSERT INTO flows (id, name, version, definition_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (flow.id, flow.name, 1, flow.model_dump_json(by_alias=True), now, now),
        )
        await self._bind_projects(db, flow.id, flow.project_keys)
        await db.commit()

        logger.info(f"Created flow {flow.id} ({flow.name})")
        return flow

    async def get_flow(self, flow_id: str) -> FlowDefinition | None:
        """Get a flow definition by ID."""
        db = await get_db()
        cursor = await db.execute(
            "SELECT definition_json FROM flows WHERE id = ?",
            (flow_id,),
        )
        row = await cursor.fetchone()

        if row is None:
            return None

        return FlowDefinition.model_validate_json(row["definition_json"])

    async def list_flows(self) -> list[FlowSummary]:
        """List all flows, most recently updated first."""
        db = await get_db()
        cursor = await db.execute(
            "SELECT id, name, version, definition_json, created_at, updated_at "
            "FROM flows ORDER BY updated_at DESC"
        )
        rows = await cursor.fetchall()
        return [self._row_to_summary(row) for row in rows]

    async def list_flows_for_project(self, project_key: str) -> list[FlowSummary]:
        """List flows bound to a project."""
        db = await get_db()
        cursor = await db.execute(
            """
            SELECT f.id, f.name, f.version, f.definition_json, f.created_at, f.updated_at
            FROM flows f
            JOIN flow_projects p ON p.flow_id = f.id
            WHERE p.project_key = ?
            ORDER BY f.name
            """,
            (project_key,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_summary(row) for row in rows]

    async def update_flow(self, flow_id: str, data: FlowCreate) -> FlowDefinition | None:
        """Replace a flow's definition, bumping its version."""
        existing = await self.get_flow(flow_id)
        if existing is None:
            return None

        db = await get_db()
        now = _now()
        flow = FlowDefinition(
            id=flow_id,
            name=data.name,
            description=data.description,
            nodes=data.nodes,
            edges=data.edges,
            project_keys=data.project_keys,
            created_at=existing.created_at,
            updated_at=now,
        )

        await db.execute(
            """
            UPDATE flows
            SET name = ?, version = version + 1, definition_json = ?, updated_at = ?
            WHERE id = ?
            """,
            (flow.name, flow.model_dump_json(by_alias=True), now, flow_id),
        )
        await db.execute("DELETE FROM flow_projects WHERE flow_id = ?", (flow_id,))
        await self._bind_projects(db, flow_id, flow.project_keys)
        await db.commit()

        return flow

    async def delete_flow(self, flow_id: str) -> bool:
        """Delete a flow together with its execution states."""
        db = await get_db()
        cursor = await db.execute("DELETE FROM flows WHERE id = ?", (flow_id,))
        await db.commit()
        return cursor.rowcount > 0

    async def _bind_projects(
        self, db: aiosqlite.Connection, flow_id: str, project_keys: list[str]
    ) -> None:
        for key in dict.fromkeys(project_keys):
            await db.execute(
                "INSERT INTO flow_projects (flow_id, project_key) VALUES (?, ?)",
                (flow_id, key),
            )

    def _row_to_summary(self, row: aiosqlite.Row) -> FlowSummary:
        definition = json.loads(row["definition_json"])
        return FlowSummary(
            id=row["id"],
            name=row["name"],
            description=definition.get("description", ""),
            project_keys=definition.get("projectKeys", []),
            node_count=len(definition.get("nodes", [])),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ==================== Execution state ====================

    async def get_execution_state(self, record_id: str, flow_id: str) -> ExecutionState | None:
        """Get the stored execution state for a record and flow."""
        db = await get_db()
        cursor = await db.execute(
            """
            SELECT state_json, version, updated_at FROM execution_states
            WHERE record_id = ? AND flow_id = ?
            """,
            (record_id, flow_id),
        )
        row = await cursor.fetchone()

        if row is None:
            return None

        data = json.loads(row["state_json"])
        data["version"] = row["version"]
        data["updatedAt"] = row["updated_at"]
        return ExecutionState.model_validate(data)

    async def save_execution_state(self, state: ExecutionState) -> ExecutionState:
        """Persist a state loaded at ``state.version``.

        Version 0 means the state has never been stored. The returned copy
        carries the new version.

        Raises:
            ConcurrentModificationError: If the stored version moved on
        """
        db = await get_db()
        now = _now()
        state_json = state.model_dump_json(by_alias=True, exclude={"version", "updated_at"})
        new_version = state.version + 1

        if state.version == 0:
            try:
                await db.execute(
                    """
                    INSERT INTO execution_states (record_id, flow_id, state_json, version, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (state.record_id, state.flow_id, state_json, new_version, now),
                )
            except aiosqlite.IntegrityError as e:
                raise ConcurrentModificationError(state.record_id, state.flow_id, 0) from e
        else:
            cursor = await db.execute(
                """
                UPDATE execution_states SET state_json = ?, version = ?, updated_at = ?
                WHERE record_id = ? AND flow_id = ? AND version = ?
                """,
                (state_json, new_version, now, state.record_id, state.flow_id, state.version),
            )
            if cursor.rowcount == 0:
                raise ConcurrentModificationError(state.record_id, state.flow_id, state.version)
        await db.commit()

        return state.model_copy(update={"version": new_version, "updated_at": now})

    async def delete_execution_state(self, record_id: str, flow_id: str) -> bool:
        """Delete the execution state for a record and flow."""
        db = await get_db()
        cursor = await db.execute(
            "DELETE FROM execution_states WHERE record_id = ? AND flow_id = ?",
            (record_id, flow_id),
        )
        await db.commit()
        return cursor.rowcount > 0

    # ==================== Audit ====================

    async def append_audit_entry(self, entry: AuditLogEntry) -> None:
        """Append an entry to the audit trail."""
        db = await get_db()
        await db.execute(
            """
            INSERT INTO audit_log (record_id, flow_id, node_id, node_type, outcome_json, error, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.record_id,
                entry.flow_id,
                entry.node_id,
                entry.node_type,
                entry.outcome.model_dump_json(by_alias=True),
                entry.error,
                entry.timestamp,
            ),
        )
        await db.commit()

    async def list_audit_entries(self, record_id: str, flow_id: str) -> list[AuditLogEntry]:
        """List audit entries for a record and flow in insertion order."""
        db = await get_db()
        cursor = await db.execute(
            """
            SELECT record_id, flow_id, node_id, node_type, outcome_json, error, created_at
            FROM audit_log WHERE record_id = ? AND flow_id = ?
            ORDER BY id
            """,
            (record_id, flow_id),
        )
        rows = await cursor.fetchall()

        return [
            AuditLogEntry(
                timestamp=row["created_at"],
                record_id=row["record_id"],
                flow_id=row["flow_id"],
                node_id=row["node_id"],
                node_type=row["node_type"],
                outcome=json.loads(row["outcome_json"]),
                error=row["error"],
            )
            for row in rows
        ]


# Global instance
flow_store = FlowStore()
