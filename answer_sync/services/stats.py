from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class OutcomeKind(StrEnum):
    COMPLETED = "completed"
    STILL_PROCESSING = "still_processing"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class CandidateOutcome:
    execution_id: str
    snapshot_id: str | None
    kind: OutcomeKind
    detail: str = ""
    error: str | None = None


@dataclass(slots=True)
class SweepStats:
    """Counters for one sweep. ``completed + still_processing + errors <= checked``."""

    checked: int = 0
    completed: int = 0
    still_processing: int = 0
    errors: int = 0
    skipped: int = 0
    error_details: list[dict[str, Any]] = field(default_factory=list)

    def record(self, outcome: CandidateOutcome) -> None:
        if outcome.kind == OutcomeKind.COMPLETED:
            self.completed += 1
        elif outcome.kind == OutcomeKind.STILL_PROCESSING:
            self.still_processing += 1
        elif outcome.kind == OutcomeKind.ERROR:
            self.errors += 1
            self.error_details.append(
                {
                    "execution_id": outcome.execution_id,
                    "snapshot_id": outcome.snapshot_id,
                    "error": outcome.error or outcome.detail,
                }
            )
        else:
            self.skipped += 1

    def as_dict(self) -> dict[str, int]:
        return {
            "checked": self.checked,
            "completed": self.completed,
            "still_processing": self.still_processing,
            "errors": self.errors,
        }
