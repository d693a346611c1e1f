"""
In-memory storage.

Used by the tests and for local runs without Google credentials. Rows are
copied on the way in and on the way out, so callers can never mutate
stored state by holding on to a returned model.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from fundledger.models.audit import AuditEvent
from fundledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
)
from fundledger.services.storage.tables import ALL_TABLES, TableLedgerStorage, TableSpec


class InMemoryLedgerStorage(TableLedgerStorage):
    """Ledger storage backed by one dict per table, keyed by record id."""

    def __init__(self):
        self._tables: dict[str, dict[UUID, BaseModel]] = {
            table.name: {} for table in ALL_TABLES
        }

    @staticmethod
    def _stored(table: TableSpec, record: BaseModel) -> BaseModel:
        if table.exclude:
            record = record.model_copy(update={name: None for name in table.exclude})
        return record.model_copy(deep=True)

    async def _insert(self, table: TableSpec, records: list[BaseModel]) -> None:
        rows = self._tables[table.name]
        for record in records:
            if record.id in rows:
                raise DuplicateError(f"{table.name} row already exists: {record.id}")
        for record in records:
            rows[record.id] = self._stored(table, record)

    async def _load(self, table: TableSpec, user_id: str) -> list[BaseModel]:
        return [
            record.model_copy(deep=True)
            for record in self._tables[table.name].values()
            if record.user_id == user_id
        ]

    async def _replace(self, table: TableSpec, record: BaseModel) -> bool:
        rows = self._tables[table.name]
        current = rows.get(record.id)
        if current is None or current.user_id != record.user_id:
            return False
        rows[record.id] = self._stored(table, record)
        return True

    async def _remove(self, table: TableSpec, ids: set[UUID], user_id: str) -> int:
        rows = self._tables[table.name]
        doomed = [
            record_id for record_id in ids
            if record_id in rows and rows[record_id].user_id == user_id
        ]
        for record_id in doomed:
            del rows[record_id]
        return len(doomed)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if user_id is None or e.user_id == user_id]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
