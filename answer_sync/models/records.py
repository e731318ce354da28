from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

EXECUTIONS_TABLE = "query_executions"
RESULTS_TABLE = "collector_results"
SNAPSHOT_COLUMN = "brightdata_snapshot_id"


class ExecutionStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse Postgres/ISO timestamps, including a trailing 'Z'."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


@dataclass(slots=True)
class Execution:
    id: str
    query_id: str | None
    brand_id: str | None
    customer_id: str | None
    collector_type: str
    snapshot_id: str | None
    status: str
    created_at: datetime | None = None
    executed_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Execution:
        return cls(
            id=str(row["id"]),
            query_id=_opt_str(row.get("query_id")),
            brand_id=_opt_str(row.get("brand_id")),
            customer_id=_opt_str(row.get("customer_id")),
            collector_type=str(row.get("collector_type") or ""),
            snapshot_id=_opt_str(row.get(SNAPSHOT_COLUMN)),
            status=str(row.get("status") or ExecutionStatus.PENDING),
            created_at=parse_timestamp(row.get("created_at")),
            executed_at=parse_timestamp(row.get("executed_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    @property
    def is_completed(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED


@dataclass(slots=True)
class CollectorResult:
    """Normalized answer for one execution. At most one row per execution_id."""

    execution_id: str
    query_id: str | None
    collector_type: str
    brand_id: str | None
    customer_id: str | None
    raw_answer: str
    citations: list[Any] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)
    question: str | None = None
    brand: str | None = None
    competitors: list[str] = field(default_factory=list)
    snapshot_id: str | None = None
    raw_response: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "query_id": self.query_id,
            "collector_type": self.collector_type,
            "brand_id": self.brand_id,
            "customer_id": self.customer_id,
            "raw_answer": self.raw_answer,
            "citations": list(self.citations),
            "urls": list(self.urls),
            "question": self.question,
            "brand": self.brand,
            "competitors": list(self.competitors) or None,
            SNAPSHOT_COLUMN: self.snapshot_id,
            "raw_response_json": self.raw_response,
            "metadata": dict(self.metadata),
        }


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
