"""
Selection Result Types
Rejection records and the outputs of the dedup and priority stages
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# dedup reasons
ALREADY_DISPATCHED = "already_dispatched"
DUPLICATE_FINGERPRINT = "duplicate_fingerprint"
CROSS_SOURCE_DUPLICATE = "cross_source_duplicate"

# priority reasons
SUPPRESSED_BY_HIGH_CORE = "suppressed_by_high_core"
SUPERSEDED_BY_HIGH = "superseded_by_high"
CYCLE_LIMIT_EXCEEDED = "cycle_limit_exceeded"
TOPIC_REDUNDANCY = "topic_redundancy"
LOW_IMPACT = "low_impact"


@dataclass
class Rejection:
    article: Any
    reason: str
    fingerprint: Optional[str] = None
    kept: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": getattr(self.article, "title", ""),
            "source": getattr(self.article, "source", ""),
            "reason": self.reason,
            "fingerprint": self.fingerprint or getattr(self.article, "fingerprint", None),
            "kept": getattr(self.kept, "title", None) if self.kept is not None else None,
        }


@dataclass
class DedupResult:
    unique: List[Any] = field(default_factory=list)
    duplicates: List[Rejection] = field(default_factory=list)

    @property
    def metrics(self) -> Dict[str, int]:
        return {"unique": len(self.unique), "duplicates": len(self.duplicates)}


@dataclass
class SelectionResult:
    selected: List[Any] = field(default_factory=list)
    suppressed: List[Rejection] = field(default_factory=list)
    metrics: Dict[str, int] = field(default_factory=dict)
