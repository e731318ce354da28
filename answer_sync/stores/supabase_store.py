from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Sequence

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from answer_sync.config import Settings
from answer_sync.errors import StoreReadError, StoreWriteFailure
from answer_sync.models.records import (
    EXECUTIONS_TABLE,
    RESULTS_TABLE,
    SNAPSHOT_COLUMN,
    CollectorResult,
    Execution,
    ExecutionStatus,
)
from answer_sync.services.logger import log_db_operation

EXECUTION_COLUMNS = (
    f"id, query_id, brand_id, customer_id, collector_type, {SNAPSHOT_COLUMN}, "
    "status, created_at, executed_at, updated_at"
)

_STORE_ERRORS = (APIError, httpx.HTTPError)


def create_store(settings: Settings) -> SupabaseStore:
    settings.require("supabase_url", "supabase_service_role_key")
    client = create_client(settings.supabase_url, settings.supabase_service_role_key)
    return SupabaseStore(client)


async def _execute(query: Any) -> Any:
    """Run blocking Supabase query execution in a worker thread."""
    return await asyncio.to_thread(query.execute)


class SupabaseStore:
    """Execution and result store backed by Supabase tables."""

    def __init__(self, client: Client):
        self.client = client

    async def _read(self, table: str, operation: str, query: Any) -> list[dict[str, Any]]:
        try:
            result = await _execute(query)
        except _STORE_ERRORS as exc:
            log_db_operation(operation, table, "failed", error=str(exc))
            raise StoreReadError(f"{operation} on {table} failed: {exc}", table=table, operation=operation) from exc
        return result.data or []

    async def _write(self, table: str, operation: str, query: Any, details: str) -> list[dict[str, Any]]:
        try:
            result = await _execute(query)
        except _STORE_ERRORS as exc:
            log_db_operation(operation, table, "failed", details=details, error=str(exc))
            raise StoreWriteFailure(f"{operation} on {table} failed: {exc}", table=table, operation=operation) from exc
        log_db_operation(operation, table, "success", details=details)
        return result.data or []

    # --- Executions ---

    async def list_outstanding(
        self,
        collector_types: Sequence[str],
        statuses: Sequence[str],
        since: datetime,
    ) -> list[Execution]:
        query = (
            self.client.table(EXECUTIONS_TABLE)
            .select(EXECUTION_COLUMNS)
            .not_.is_(SNAPSHOT_COLUMN, "null")
            .in_("status", list(statuses))
            .in_("collector_type", list(collector_types))
            .gte("executed_at", since.isoformat())
        )
        rows = await self._read(EXECUTIONS_TABLE, "list_outstanding", query)
        return [Execution.from_row(row) for row in rows]

    async def get_by_handle(self, snapshot_id: str) -> Execution | None:
        query = (
            self.client.table(EXECUTIONS_TABLE)
            .select(EXECUTION_COLUMNS)
            .eq(SNAPSHOT_COLUMN, snapshot_id)
            .limit(1)
        )
        rows = await self._read(EXECUTIONS_TABLE, "get_by_handle", query)
        return Execution.from_row(rows[0]) if rows else None

    async def update_status(
        self,
        execution_id: str,
        status: str,
        *,
        executed_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        update: dict[str, Any] = {"status": str(status)}
        if executed_at is not None:
            update["executed_at"] = executed_at.isoformat()
        if updated_at is not None:
            update["updated_at"] = updated_at.isoformat()

        query = self.client.table(EXECUTIONS_TABLE).update(update).eq("id", execution_id)
        if status != ExecutionStatus.COMPLETED:
            # Completed executions are terminal.
            query = query.neq("status", ExecutionStatus.COMPLETED.value)
        await self._write(EXECUTIONS_TABLE, "update_status", query, details=f"id={execution_id} status={status}")

    # --- Denormalized lookups ---

    async def get_query_text(self, query_id: str) -> str | None:
        query = self.client.table("generated_queries").select("query_text").eq("id", query_id).limit(1)
        rows = await self._read("generated_queries", "get_query_text", query)
        return rows[0].get("query_text") if rows else None

    async def get_brand_name(self, brand_id: str) -> str | None:
        query = self.client.table("brands").select("name").eq("id", brand_id).limit(1)
        rows = await self._read("brands", "get_brand_name", query)
        return rows[0].get("name") if rows else None

    async def get_competitor_names(self, brand_id: str) -> list[str]:
        query = self.client.table("brand_competitors").select("competitor_name").eq("brand_id", brand_id)
        rows = await self._read("brand_competitors", "get_competitor_names", query)
        return [str(row["competitor_name"]) for row in rows if row.get("competitor_name")]

    # --- Results ---

    async def upsert(self, result: CollectorResult) -> None:
        query = self.client.table(RESULTS_TABLE).upsert(result.to_row(), on_conflict="execution_id")
        await self._write(RESULTS_TABLE, "upsert", query, details=f"execution_id={result.execution_id}")
