from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import httpx
import pytest
from loguru import logger

from answer_sync.errors import StoreReadError
from answer_sync.models.records import ExecutionStatus
from answer_sync.providers.brightdata import NotReady, Ready
from answer_sync.services.reconciler import ReconciliationEngine
from conftest import NOW, FakeStore, make_execution, make_snapshot_client

READY_PAYLOAD = [
    {
        "answer_text": "Acme makes the best running shoes.",
        "citations": [
            {"url": "https://reviews.example.com/acme"},
            {"url": "https://reviews.example.com/acme"},
            "https://shop.example.com",
        ],
    }
]


def make_engine(store: FakeStore, routes: dict, **kwargs) -> ReconciliationEngine:
    client, _ = make_snapshot_client(routes)
    return ReconciliationEngine(store, store, client, clock=lambda: NOW, **kwargs)


@pytest.mark.asyncio
async def test_sweep_scenario_ready_202_and_malformed(store):
    store.executions = {
        e.id: e
        for e in [
            make_execution("e1", "s_ready"),
            make_execution("e2", "s_202", status="running"),
            make_execution("e3", "s_bad"),
        ]
    }
    engine = make_engine(
        store,
        {
            "s_ready": (200, json.dumps(READY_PAYLOAD)),
            "s_202": (202, json.dumps({"status": "running"})),
            "s_bad": (200, '{"answer_text": "trunc'),
        },
    )

    stats = await engine.sweep()

    assert stats.as_dict() == {"checked": 3, "completed": 1, "still_processing": 2, "errors": 0}
    result = store.results["e1"]
    assert result.urls == ["https://reviews.example.com/acme", "https://shop.example.com"]
    assert len(result.citations) == 3
    assert result.raw_answer == "Acme makes the best running shoes."
    assert result.question == "best running shoes"
    assert result.brand == "Acme"
    assert result.competitors == ["Globex", "Initech"]
    assert result.raw_response == READY_PAYLOAD
    assert result.metadata["collected_by"] == "background_service"
    assert result.metadata["execution_created_at"] == (NOW - timedelta(hours=1)).isoformat()
    assert result.metadata["previous_status"] == "failed"
    assert store.executions["e1"].status == ExecutionStatus.COMPLETED
    assert store.executions["e1"].executed_at == NOW
    assert store.executions["e2"].status == "running"
    assert store.executions["e3"].status == "failed"


@pytest.mark.asyncio
async def test_sweep_uses_lookback_window_and_filters(store):
    store.executions = {
        e.id: e
        for e in [
            make_execution("fresh", "s_fresh"),
            make_execution("old", "s_old", executed_at=NOW - timedelta(hours=25)),
        ]
    }
    engine = make_engine(store, {"s_fresh": (202, "{}"), "s_old": (200, json.dumps(READY_PAYLOAD))})

    stats = await engine.sweep()

    call = store.list_calls[0]
    assert call["since"] == NOW - timedelta(hours=24)
    assert call["statuses"] == ["failed", "running"]
    assert call["collector_types"] == ["Bing Copilot", "Grok"]
    assert stats.checked == 1
    assert "old" not in store.results
    assert store.executions["old"].status == "failed"


@pytest.mark.asyncio
async def test_second_completion_overwrites_single_result(store):
    execution = make_execution("e1", "s_1")
    store.executions = {"e1": execution}
    first = [{"answer_text": "first answer", "citations": ["https://a.com"]}]
    second = [{"answer_text": "second answer", "citations": ["https://b.com"]}]

    await make_engine(store, {"s_1": (200, json.dumps(first))}).sweep()
    # A concurrent sweep that read the row before completion still reconciles it.
    execution.status = "running"
    await make_engine(store, {"s_1": (200, json.dumps(second))}).sweep()

    assert list(store.results) == ["e1"]
    assert store.upsert_calls == 2
    assert store.results["e1"].raw_answer == "second answer"
    assert store.results["e1"].urls == ["https://b.com"]


@pytest.mark.asyncio
async def test_completed_execution_is_never_moved_back(store):
    store.executions = {"e1": make_execution("e1", "s_1", status="completed")}
    engine = make_engine(store, {"s_1": (200, json.dumps({"status": "running"}))})

    stats = await engine.sweep()
    check = await engine.check_snapshot("s_1")

    assert stats.checked == 0
    assert store.status_updates == []
    assert store.executions["e1"].status == "completed"
    assert check.success is False


@pytest.mark.asyncio
async def test_not_ready_and_unrecognized_payloads_count_as_still_processing(store):
    store.executions = {
        e.id: e for e in [make_execution("e1", "s_running"), make_execution("e2", "s_empty")]
    }
    engine = make_engine(
        store,
        {"s_running": (200, json.dumps({"status": "running"})), "s_empty": (200, "{}")},
    )

    stats = await engine.sweep()

    assert stats.still_processing == 2
    assert stats.errors == 0
    assert store.results == {}
    assert store.status_updates == []


@pytest.mark.asyncio
async def test_transient_network_error_leaves_execution_untouched(store):
    store.executions = {"e1": make_execution("e1", "s_1")}
    engine = make_engine(store, {"s_1": httpx.ConnectError("connection refused")})

    stats = await engine.sweep()

    assert stats.still_processing == 1
    assert stats.errors == 0
    assert store.executions["e1"].status == "failed"


@pytest.mark.asyncio
async def test_upsert_failure_is_counted_and_sweep_continues(store):
    store.executions = {
        e.id: e for e in [make_execution("e1", "s_1"), make_execution("e2", "s_2")]
    }
    store.fail_upserts = 1
    engine = make_engine(
        store,
        {"s_1": (200, json.dumps(READY_PAYLOAD)), "s_2": (200, json.dumps(READY_PAYLOAD))},
    )

    stats = await engine.sweep()

    assert stats.as_dict() == {"checked": 2, "completed": 1, "still_processing": 0, "errors": 1}
    assert stats.error_details[0]["execution_id"] == "e1"
    assert store.executions["e1"].status == "failed"
    assert store.executions["e2"].status == "completed"


@pytest.mark.asyncio
async def test_lost_status_update_is_reissued_once(store):
    store.executions = {"e1": make_execution("e1", "s_1")}
    store.lost_status_updates = 1
    engine = make_engine(store, {"s_1": (200, json.dumps(READY_PAYLOAD))})

    stats = await engine.sweep()

    assert stats.completed == 1
    assert store.status_updates == [("e1", "completed"), ("e1", "completed")]
    assert store.executions["e1"].status == "completed"


@pytest.mark.asyncio
async def test_failed_reissue_is_counted_as_error(store):
    store.executions = {"e1": make_execution("e1", "s_1")}
    store.lost_status_updates = 1
    engine = make_engine(store, {"s_1": (200, json.dumps(READY_PAYLOAD))})

    real_update = store.update_status
    calls = 0

    async def update_then_fail(*args, **kwargs):
        nonlocal calls
        calls += 1
        if calls == 2:
            store.fail_status_updates = 1
        return await real_update(*args, **kwargs)

    store.update_status = update_then_fail

    stats = await engine.sweep()

    assert calls == 2
    assert stats.errors == 1
    assert stats.completed == 0
    assert "e1" in store.results


@pytest.mark.asyncio
async def test_execution_without_snapshot_is_skipped(store):
    engine = make_engine(store, {})

    async def list_with_null_handle(*_args, **_kwargs):
        return [make_execution("e1", None), make_execution("e2", "s_2")]

    store.list_outstanding = list_with_null_handle

    stats = await engine.sweep()

    assert stats.checked == 2
    assert stats.skipped == 1
    assert stats.completed + stats.still_processing + stats.errors < stats.checked


@pytest.mark.asyncio
async def test_enumeration_failure_propagates(store):
    store.fail_listing = True
    engine = make_engine(store, {})

    with pytest.raises(StoreReadError):
        await engine.sweep()


@pytest.mark.asyncio
async def test_bounded_parallel_sweep_respects_limit(store):
    store.executions = {
        f"e{i}": make_execution(f"e{i}", f"s_{i}") for i in range(6)
    }
    engine = make_engine(store, {}, max_parallel=2)
    in_flight = 0
    peak = 0

    async def slow_poll(_snapshot_id):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return NotReady(reason="http_202", status_code=202)

    engine.client.poll = slow_poll

    stats = await engine.sweep()

    assert stats.still_processing == 6
    assert peak == 2


@pytest.mark.asyncio
async def test_deadline_abandons_unfinished_checks_as_still_processing(store):
    store.executions = {
        e.id: e for e in [make_execution("e1", "s_fast"), make_execution("e2", "s_slow")]
    }
    engine = make_engine(store, {}, max_parallel=2, deadline_s=0.05)

    async def poll(snapshot_id):
        if snapshot_id == "s_slow":
            await asyncio.sleep(5)
        return Ready(payload=READY_PAYLOAD)

    engine.client.poll = poll

    stats = await engine.sweep()

    assert stats.as_dict() == {"checked": 2, "completed": 1, "still_processing": 1, "errors": 0}
    assert store.executions["e2"].status == "failed"


@pytest.mark.asyncio
async def test_check_snapshot_reports_answer_without_writing(store):
    store.executions = {"e1": make_execution("e1", "s_1")}
    engine = make_engine(store, {"s_1": (200, json.dumps(READY_PAYLOAD))})

    check = await engine.check_snapshot("s_1")

    assert check.success is True
    assert check.execution.id == "e1"
    assert check.answer.urls == ["https://reviews.example.com/acme", "https://shop.example.com"]
    assert store.results == {}
    assert store.status_updates == []


@pytest.mark.asyncio
async def test_check_snapshot_unknown_handle(store):
    engine = make_engine(store, {})

    check = await engine.check_snapshot("nope")

    assert check.success is False
    assert check.execution is None


@pytest.mark.asyncio
async def test_check_snapshot_not_ready_returns_execution_only(store):
    store.executions = {"e1": make_execution("e1", "s_1")}
    engine = make_engine(store, {"s_1": (202, "{}")})

    check = await engine.check_snapshot("s_1")

    assert check.success is False
    assert check.execution.id == "e1"
    assert check.answer is None


@pytest.mark.asyncio
async def test_failed_enrichment_lookup_still_completes(store):
    store.executions = {"e1": make_execution("e1", "s_1")}
    engine = make_engine(store, {"s_1": (200, json.dumps(READY_PAYLOAD))})

    async def broken_competitors(_brand_id):
        raise StoreReadError("timeout", table="brand_competitors", operation="get_competitor_names")

    store.get_competitor_names = broken_competitors

    stats = await engine.sweep()

    assert stats.as_dict() == {"checked": 1, "completed": 1, "still_processing": 0, "errors": 0}
    result = store.results["e1"]
    assert result.competitors == []
    assert result.question == "best running shoes"
    assert result.brand == "Acme"
    assert store.executions["e1"].status == "completed"


@pytest.fixture
def log_records():
    records = []
    handler_id = logger.add(
        lambda message: records.append((message.record["level"].name, message.record["message"])),
        level="INFO",
    )
    yield records
    logger.remove(handler_id)


@pytest.mark.asyncio
async def test_unrecognized_payload_logged_at_warning_and_in_progress_at_info(store, log_records):
    store.executions = {
        e.id: e for e in [make_execution("e1", "s_running"), make_execution("e2", "s_empty")]
    }
    engine = make_engine(
        store,
        {"s_running": (200, json.dumps({"status": "running"})), "s_empty": (200, "{}")},
    )

    await engine.sweep()

    running = [level for level, message in log_records if "s_running still processing" in message]
    unrecognized = [level for level, message in log_records if "Unrecognized payload for snapshot s_empty" in message]
    assert running == ["INFO"]
    assert unrecognized == ["WARNING"]
