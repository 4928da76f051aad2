"""Tests for the best-effort audit logger."""

import logging

import pytest
from pydantic import ValidationError

from decisionflow.engine.audit import AuditLogger
from decisionflow.models import AuditLogEntry, FlowCompletedOutcome, FlowStartedOutcome


class MemoryAuditStore:
    def __init__(self, fail_on: int | None = None):
        self.entries: list[AuditLogEntry] = []
        self.fail_on = fail_on
        self.attempts = 0

    async def append_audit_entry(self, entry: AuditLogEntry) -> None:
        self.attempts += 1
        if self.attempts == self.fail_on:
            raise OSError("disk full")
        self.entries.append(entry)

    async def list_audit_entries(self, record_id: str, flow_id: str) -> list[AuditLogEntry]:
        return [e for e in self.entries if (e.record_id, e.flow_id) == (record_id, flow_id)]


def entry(node_id: str, outcome=None) -> AuditLogEntry:
    return AuditLogEntry(
        record_id="PROJ-1",
        flow_id="triage",
        node_id=node_id,
        node_type="start",
        outcome=outcome or FlowStartedOutcome(),
    )


class TestAuditLogger:
    @pytest.mark.asyncio
    async def test_append_and_list_in_order(self):
        logger = AuditLogger(MemoryAuditStore())
        entries = [entry("start"), entry("q1"), entry("q1")]

        assert await logger.append_many(entries) == 3

        listed = await logger.list("PROJ-1", "triage")
        assert [e.node_id for e in listed] == ["start", "q1", "q1"]

    @pytest.mark.asyncio
    async def test_store_failure_is_swallowed(self, caplog):
        logger = AuditLogger(MemoryAuditStore(fail_on=1))

        with caplog.at_level(logging.ERROR):
            assert await logger.append(entry("start")) is False

        assert "Failed to append audit entry" in caplog.text

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_later_entries(self):
        store = MemoryAuditStore(fail_on=2)
        logger = AuditLogger(store)

        written = await logger.append_many(
            [entry("start"), entry("q1"), entry("end", FlowCompletedOutcome())]
        )

        assert written == 2
        assert [e.node_id for e in store.entries] == ["start", "end"]

    @pytest.mark.asyncio
    async def test_entries_are_immutable(self):
        e = entry("start")
        with pytest.raises(ValidationError):
            e.node_id = "other"
