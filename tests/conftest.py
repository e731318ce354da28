from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest

from answer_sync.errors import StoreReadError, StoreWriteFailure
from answer_sync.models.records import CollectorResult, Execution, ExecutionStatus
from answer_sync.providers.brightdata import SnapshotClient

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeStore:
    """In-memory execution + result store with hooks for simulated faults."""

    def __init__(self, executions: list[Execution] | None = None):
        self.executions: dict[str, Execution] = {e.id: e for e in executions or []}
        self.results: dict[str, CollectorResult] = {}
        self.query_texts: dict[str, str] = {}
        self.brand_names: dict[str, str] = {}
        self.competitors: dict[str, list[str]] = {}
        self.status_updates: list[tuple[str, str]] = []
        self.upsert_calls = 0
        self.list_calls: list[dict[str, Any]] = []
        # Fault injection
        self.fail_listing = False
        self.fail_upserts = 0
        self.fail_status_updates = 0
        self.lost_status_updates = 0

    async def list_outstanding(self, collector_types, statuses, since):
        self.list_calls.append(
            {"collector_types": list(collector_types), "statuses": list(statuses), "since": since}
        )
        if self.fail_listing:
            raise StoreReadError("connection refused", table="query_executions", operation="list_outstanding")
        return [
            e
            for e in self.executions.values()
            if e.snapshot_id is not None
            and e.status in statuses
            and e.collector_type in collector_types
            and e.executed_at is not None
            and e.executed_at >= since
        ]

    async def get_by_handle(self, snapshot_id):
        for execution in self.executions.values():
            if execution.snapshot_id == snapshot_id:
                return execution
        return None

    async def update_status(self, execution_id, status, *, executed_at=None, updated_at=None):
        self.status_updates.append((execution_id, str(status)))
        if self.fail_status_updates > 0:
            self.fail_status_updates -= 1
            raise StoreWriteFailure("update rejected", table="query_executions", operation="update_status")
        if self.lost_status_updates > 0:
            self.lost_status_updates -= 1
            return
        execution = self.executions[execution_id]
        if execution.status == ExecutionStatus.COMPLETED and status != ExecutionStatus.COMPLETED:
            return
        execution.status = str(status)
        if executed_at is not None:
            execution.executed_at = executed_at
        if updated_at is not None:
            execution.updated_at = updated_at

    async def get_query_text(self, query_id):
        return self.query_texts.get(query_id)

    async def get_brand_name(self, brand_id):
        return self.brand_names.get(brand_id)

    async def get_competitor_names(self, brand_id):
        return list(self.competitors.get(brand_id, []))

    async def upsert(self, result):
        self.upsert_calls += 1
        if self.fail_upserts > 0:
            self.fail_upserts -= 1
            raise StoreWriteFailure("upsert rejected", table="collector_results", operation="upsert")
        self.results[result.execution_id] = result


def make_execution(
    execution_id: str,
    snapshot_id: str | None,
    *,
    status: str = "failed",
    collector_type: str = "Grok",
    executed_at: datetime | None = None,
) -> Execution:
    return Execution(
        id=execution_id,
        query_id=f"q-{execution_id}",
        brand_id="brand-1",
        customer_id="cust-1",
        collector_type=collector_type,
        snapshot_id=snapshot_id,
        status=status,
        created_at=NOW - timedelta(hours=2),
        executed_at=executed_at or NOW - timedelta(hours=1),
        updated_at=NOW - timedelta(hours=1),
    )


def make_snapshot_client(routes: dict[str, Any]) -> tuple[SnapshotClient, list[httpx.Request]]:
    """SnapshotClient whose HTTP calls are answered from ``routes`` by snapshot id."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        snapshot_id = request.url.path.rsplit("/", 1)[-1]
        route = routes.get(snapshot_id, (404, "Snapshot not found"))
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        status, body = route
        return httpx.Response(status, text=body)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = SnapshotClient(api_key="test-key", http_client=http_client)
    return client, seen


@pytest.fixture
def store() -> FakeStore:
    fake = FakeStore()
    fake.query_texts = {"q-e1": "best running shoes", "q-e2": "best trail shoes"}
    fake.brand_names = {"brand-1": "Acme"}
    fake.competitors = {"brand-1": ["Globex", "Initech"]}
    return fake
