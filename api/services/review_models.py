# api/services/review_models.py
# ================================
# Review Engine - Shared types
# ================================
# Status vocabularies for ingestions and invoice lines, plus the small value
# objects passed between the engine components.

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional


class IngestionStatus(str, Enum):
    QUEUED = "queued"
    EXTRACTING = "extracting"
    MATCHED = "matched"
    POSTING = "posting"
    BILLED = "billed"
    FAILED = "failed"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    APPROVED = "approved"
    REJECTED = "rejected"


class UiState(str, Enum):
    QUEUED = "Queued"
    EXTRACTING = "Extracting"
    MATCHED = "Matched"
    READY = "Ready"
    POSTING = "Posting"
    BILLED = "Billed"
    FAILED = "Failed"


class MatchState(str, Enum):
    UNMATCHED = "unmatched"
    TO_CREATE = "to_create"
    AUTO_MATCHED = "auto_matched"
    HUMAN_MATCHED = "human_matched"
    CREATED = "created"

    @classmethod
    def parse(cls, value: Any) -> Optional["MatchState"]:
        """Return the state for a raw column value, or None if unrecognized."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class MatchCounts:
    unmatched: int = 0
    to_create: int = 0

    @classmethod
    def from_lines(cls, lines: Iterable[Dict[str, Any]]) -> "MatchCounts":
        # Only exact state values count; null or unknown states are neither.
        unmatched = 0
        to_create = 0
        for line in lines:
            state = line.get("match_state") or ""
            if state == MatchState.UNMATCHED.value:
                unmatched += 1
            elif state == MatchState.TO_CREATE.value:
                to_create += 1
        return cls(unmatched=unmatched, to_create=to_create)

    def as_dict(self) -> Dict[str, int]:
        return {"unmatched": self.unmatched, "to_create": self.to_create}


@dataclass
class NameLookup:
    """Best-effort id -> display name resolution.

    `names` holds whatever resolved; ids missing from it simply have no name.
    `degraded` is True when the lookup itself failed, so an empty result is
    not mistaken for "no such item".
    """

    names: Dict[str, Optional[str]] = field(default_factory=dict)
    degraded: bool = False

    def get(self, key: Optional[str]) -> Optional[str]:
        if not key:
            return None
        return self.names.get(key) or None

    @classmethod
    def failed(cls) -> "NameLookup":
        return cls(names={}, degraded=True)
