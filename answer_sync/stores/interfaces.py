from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence

from answer_sync.models.records import CollectorResult, Execution


class ExecutionStore(Protocol):
    async def list_outstanding(
        self,
        collector_types: Sequence[str],
        statuses: Sequence[str],
        since: datetime,
    ) -> list[Execution]: ...

    async def get_by_handle(self, snapshot_id: str) -> Execution | None: ...

    async def update_status(
        self,
        execution_id: str,
        status: str,
        *,
        executed_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> None: ...

    async def get_query_text(self, query_id: str) -> str | None: ...
    async def get_brand_name(self, brand_id: str) -> str | None: ...
    async def get_competitor_names(self, brand_id: str) -> list[str]: ...


class ResultStore(Protocol):
    async def upsert(self, result: CollectorResult) -> None:
        """Insert or replace the row keyed by ``result.execution_id``."""
        ...
