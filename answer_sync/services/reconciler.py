"""Reconcile snapshot-based executions against provider completion.

Each sweep re-derives its candidates from the execution store, so a crashed
or restarted process loses nothing and overlapping sweeps are safe: the
result write is an upsert keyed by execution id, and the only status this
engine ever writes is ``completed``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Sequence, TypeVar

from loguru import logger

from answer_sync.config import Settings
from answer_sync.errors import StoreError
from answer_sync.extract.payload import ExtractedAnswer, ExtractionState, extract
from answer_sync.models.records import CollectorResult, Execution, ExecutionStatus
from answer_sync.providers.brightdata import NotReady, Ready, SnapshotClient, TransientError
from answer_sync.services.logger import log_event
from answer_sync.services.stats import CandidateOutcome, OutcomeKind, SweepStats
from answer_sync.stores.interfaces import ExecutionStore, ResultStore

COLLECTED_BY = "background_service"

T = TypeVar("T")


@dataclass(slots=True)
class SnapshotCheck:
    success: bool
    execution: Execution | None = None
    answer: ExtractedAnswer | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationEngine:
    def __init__(
        self,
        executions: ExecutionStore,
        results: ResultStore,
        client: SnapshotClient,
        *,
        collector_types: Sequence[str] = ("Bing Copilot", "Grok"),
        statuses: Sequence[str] = (ExecutionStatus.FAILED.value, ExecutionStatus.RUNNING.value),
        lookback: timedelta = timedelta(hours=24),
        max_parallel: int = 1,
        deadline_s: float | None = None,
        extract_urls_from_text: bool = True,
        wait_max_attempts: int = 60,
        wait_interval_s: float = 10.0,
        clock: Callable[[], datetime] | None = None,
    ):
        self.executions = executions
        self.results = results
        self.client = client
        self.collector_types = list(collector_types)
        self.statuses = list(statuses)
        self.lookback = lookback
        self.max_parallel = max(int(max_parallel), 1)
        self.deadline_s = deadline_s if deadline_s and deadline_s > 0 else None
        self.extract_urls_from_text = extract_urls_from_text
        self.wait_max_attempts = wait_max_attempts
        self.wait_interval_s = wait_interval_s
        self._clock = clock or _utcnow

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: ExecutionStore,
        results: ResultStore | None = None,
        client: SnapshotClient | None = None,
    ) -> ReconciliationEngine:
        return cls(
            store,
            results if results is not None else store,
            client or SnapshotClient.from_settings(settings),
            collector_types=settings.async_collector_type_list,
            statuses=settings.outstanding_status_list,
            lookback=timedelta(hours=settings.sweep_lookback_hours),
            max_parallel=settings.sweep_max_parallel,
            deadline_s=settings.sweep_deadline_s,
            extract_urls_from_text=settings.extract_urls_from_text,
            wait_max_attempts=settings.snapshot_wait_max_attempts,
            wait_interval_s=settings.snapshot_wait_interval_s,
        )

    # --- Sweep ---

    async def sweep(self) -> SweepStats:
        """Check every outstanding execution once and complete the ready ones.

        Per-candidate failures are counted, never raised. A failure to
        enumerate candidates propagates to the caller.
        """
        self.client.ensure_configured()
        stats = SweepStats()
        since = self._clock() - self.lookback

        logger.info("Starting background check for outstanding snapshot executions...")
        candidates = await self.executions.list_outstanding(self.collector_types, self.statuses, since)
        stats.checked = len(candidates)
        if not candidates:
            logger.info("No outstanding snapshot executions to check")
            return stats

        logger.info(f"Found {len(candidates)} outstanding snapshot executions to check")
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def run(execution: Execution) -> CandidateOutcome:
            async with semaphore:
                return await self._reconcile_candidate(execution)

        tasks = {asyncio.create_task(run(execution)): execution for execution in candidates}
        done, pending = await asyncio.wait(tasks, timeout=self.deadline_s)

        if pending:
            logger.warning(
                f"Sweep deadline of {self.deadline_s}s reached; abandoning {len(pending)} unfinished checks"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for task, execution in tasks.items():
            if task in done:
                stats.record(task.result())
            else:
                stats.record(
                    CandidateOutcome(
                        execution_id=execution.id,
                        snapshot_id=execution.snapshot_id,
                        kind=OutcomeKind.STILL_PROCESSING,
                        detail="abandoned at sweep deadline",
                    )
                )

        log_event(
            "sweep_complete",
            f"{stats.completed} completed, {stats.still_processing} still processing, {stats.errors} errors",
            **stats.as_dict(),
        )
        return stats

    async def _reconcile_candidate(self, execution: Execution) -> CandidateOutcome:
        snapshot_id = execution.snapshot_id
        if not snapshot_id:
            return CandidateOutcome(execution.id, None, OutcomeKind.SKIPPED, detail="no snapshot id")

        def still_processing(detail: str) -> CandidateOutcome:
            return CandidateOutcome(execution.id, snapshot_id, OutcomeKind.STILL_PROCESSING, detail=detail)

        logger.info(f"Checking snapshot {snapshot_id} for execution {execution.id}")
        try:
            polled = await self.client.poll(snapshot_id)
            if isinstance(polled, NotReady):
                return still_processing(f"not_ready:{polled.reason}")
            if isinstance(polled, TransientError):
                return still_processing(f"transient:{polled.error_type.value}")

            extraction = extract(polled.payload, urls_from_answer=self.extract_urls_from_text)
            if extraction.state == ExtractionState.IN_PROGRESS:
                logger.info(f"Snapshot {snapshot_id} still processing ({extraction.detail})")
                return still_processing(f"in_progress:{extraction.detail}")
            if extraction.state == ExtractionState.UNRECOGNIZED:
                logger.warning(f"Unrecognized payload for snapshot {snapshot_id}: {extraction.detail}")
                return still_processing(f"unrecognized:{extraction.detail}")

            return await self._complete(execution, extraction.answer, polled.payload)
        except Exception as exc:
            logger.exception(f"Error processing execution {execution.id} (snapshot {snapshot_id}): {exc}")
            return CandidateOutcome(
                execution.id,
                snapshot_id,
                OutcomeKind.ERROR,
                detail=type(exc).__name__,
                error=str(exc) or type(exc).__name__,
            )

    async def _complete(self, execution: Execution, answer: ExtractedAnswer, payload: object) -> CandidateOutcome:
        question = brand = None
        competitors: list[str] = []
        if execution.query_id:
            question = await self._lookup(execution, self.executions.get_query_text(execution.query_id), None)
        if execution.brand_id:
            brand = await self._lookup(execution, self.executions.get_brand_name(execution.brand_id), None)
            competitors = await self._lookup(execution, self.executions.get_competitor_names(execution.brand_id), [])

        now = self._clock()
        result = CollectorResult(
            execution_id=execution.id,
            query_id=execution.query_id,
            collector_type=execution.collector_type,
            brand_id=execution.brand_id,
            customer_id=execution.customer_id,
            raw_answer=answer.answer_text,
            citations=answer.raw_citations,
            urls=answer.urls,
            question=question,
            brand=brand,
            competitors=competitors,
            snapshot_id=execution.snapshot_id,
            raw_response=payload,
            metadata={
                "collected_by": COLLECTED_BY,
                "collected_at": now.isoformat(),
                "execution_created_at": execution.executed_at.isoformat() if execution.executed_at else None,
                "previous_status": execution.status,
                "answer_field": answer.answer_field,
            },
        )

        await self.results.upsert(result)
        await self.executions.update_status(
            execution.id, ExecutionStatus.COMPLETED, executed_at=now, updated_at=now
        )
        detail = await self._verify_completed(execution, now)

        logger.info(f"Completed execution {execution.id} from snapshot {execution.snapshot_id} ({len(answer.urls)} urls)")
        return CandidateOutcome(execution.id, execution.snapshot_id, OutcomeKind.COMPLETED, detail=detail)

    @staticmethod
    async def _lookup(execution: Execution, call: Awaitable[T], default: T) -> T:
        """Denormalized lookups are for reporting only and never block completion."""
        try:
            return await call
        except StoreError as exc:
            logger.warning(f"Lookup for execution {execution.id} failed, storing null: {exc}")
            return default

    async def _verify_completed(self, execution: Execution, now: datetime) -> str:
        """Compensating step: re-issue the status update once if it did not stick.

        A failing re-issue propagates and is counted as an error for the
        candidate. There is no second re-check.
        """
        try:
            current = await self.executions.get_by_handle(execution.snapshot_id)
        except StoreError as exc:
            logger.warning(f"Could not re-read execution {execution.id} after completion: {exc}")
            current = None
        if current is not None and current.is_completed:
            return "verified"

        logger.warning(
            f"Execution {execution.id} not visible as completed after update "
            f"(status={current.status if current else 'unknown'}); re-issuing status update"
        )
        await self.executions.update_status(
            execution.id, ExecutionStatus.COMPLETED, executed_at=now, updated_at=now
        )
        log_event("status_reissued", "Completion status re-issued after verification", execution_id=execution.id)
        return "status re-issued"

    # --- Single snapshot ---

    async def check_snapshot(self, snapshot_id: str, *, wait: bool = False) -> SnapshotCheck:
        """Inspect one snapshot without writing anything to the store."""
        try:
            execution = await self.executions.get_by_handle(snapshot_id)
        except StoreError as exc:
            logger.warning(f"Error looking up snapshot {snapshot_id}: {exc}")
            return SnapshotCheck(success=False)
        if execution is None:
            return SnapshotCheck(success=False)

        if wait:
            polled = await self.client.poll_until_ready(
                snapshot_id,
                max_attempts=self.wait_max_attempts,
                interval_s=self.wait_interval_s,
            )
        else:
            polled = await self.client.poll(snapshot_id)
        if not isinstance(polled, Ready):
            return SnapshotCheck(success=False, execution=execution)

        extraction = extract(polled.payload, urls_from_answer=self.extract_urls_from_text)
        if not extraction.is_ready:
            return SnapshotCheck(success=False, execution=execution)
        return SnapshotCheck(success=True, execution=execution, answer=extraction.answer)
