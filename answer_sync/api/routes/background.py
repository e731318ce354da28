from __future__ import annotations

from fastapi import APIRouter, Depends

from answer_sync.api.deps import get_engine
from answer_sync.models.schemas import (
    ExecutionSummary,
    ExtractedAnswerResponse,
    SnapshotCheckEnvelope,
    SnapshotCheckResponse,
    SweepEnvelope,
    SweepStatsResponse,
)
from answer_sync.services.reconciler import ReconciliationEngine, SnapshotCheck

router = APIRouter(prefix="/api/background", tags=["background"])


def _check_to_response(check: SnapshotCheck) -> SnapshotCheckResponse:
    execution = None
    if check.execution is not None:
        e = check.execution
        execution = ExecutionSummary(
            id=e.id,
            query_id=e.query_id,
            brand_id=e.brand_id,
            customer_id=e.customer_id,
            collector_type=e.collector_type,
            snapshot_id=e.snapshot_id,
            status=e.status,
            executed_at=e.executed_at,
        )
    result = None
    if check.answer is not None:
        result = ExtractedAnswerResponse(
            answer_text=check.answer.answer_text,
            citations=check.answer.raw_citations,
            urls=check.answer.urls,
        )
    return SnapshotCheckResponse(success=check.success, execution=execution, result=result)


@router.post("/check-failed", response_model=SweepEnvelope)
async def check_failed(engine: ReconciliationEngine = Depends(get_engine)):
    """Run one reconciliation sweep. Meant to be called by a scheduler."""
    stats = await engine.sweep()
    return SweepEnvelope(success=True, data=SweepStatsResponse(**stats.as_dict()))


@router.post("/check-snapshot/{snapshot_id}", response_model=SnapshotCheckEnvelope)
async def check_snapshot(snapshot_id: str, engine: ReconciliationEngine = Depends(get_engine)):
    """Inspect one snapshot without changing stored state."""
    check = await engine.check_snapshot(snapshot_id)
    return SnapshotCheckEnvelope(success=True, data=_check_to_response(check))
