from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DrainOutcome(str, Enum):
    QUIESCENT = "quiescent"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class DrainResult:
    entity_path: str
    processor_identifier: str
    messages_deleted: int
    outcome: DrainOutcome
    elapsed_seconds: float
    handler_faults: int = 0

    def to_dict(self) -> dict:
        return {
            "entity_path": self.entity_path,
            "processor_identifier": self.processor_identifier,
            "messages_deleted": self.messages_deleted,
            "outcome": self.outcome.value,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "handler_faults": self.handler_faults,
        }
