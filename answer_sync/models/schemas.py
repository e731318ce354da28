from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class SweepStatsResponse(BaseModel):
    checked: int
    completed: int
    still_processing: int
    errors: int


class ExecutionSummary(BaseModel):
    id: str
    query_id: str | None
    brand_id: str | None
    customer_id: str | None
    collector_type: str
    snapshot_id: str | None
    status: str
    executed_at: datetime | None = None


class ExtractedAnswerResponse(BaseModel):
    answer_text: str
    citations: list[Any]
    urls: list[str]


class SnapshotCheckResponse(BaseModel):
    success: bool
    execution: ExecutionSummary | None = None
    result: ExtractedAnswerResponse | None = None


class SweepEnvelope(BaseModel):
    success: bool
    data: SweepStatsResponse


class SnapshotCheckEnvelope(BaseModel):
    success: bool
    data: SnapshotCheckResponse
