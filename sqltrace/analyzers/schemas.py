"""Advisor result schemas."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Severity(str, Enum):
    """Suggestion severity. Penalty is subtracted from the score."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def penalty(self) -> int:
        return SEVERITY_PENALTIES[self]

    @property
    def rank(self) -> int:
        """Sort rank: High first."""
        return SEVERITY_RANK[self]


SEVERITY_PENALTIES: dict[Severity, int] = {
    Severity.HIGH: 20,
    Severity.MEDIUM: 10,
    Severity.LOW: 5,
}

SEVERITY_RANK: dict[Severity, int] = {
    Severity.HIGH: 0,
    Severity.MEDIUM: 1,
    Severity.LOW: 2,
}


class SuggestionType(str, Enum):
    """Suggestion categories.

    ``SEQUENTIAL_SCAN_LARGE_TABLE`` is reserved for transport compatibility
    and is not emitted: a large full scan is always reported as
    ``MISSING_INDEX``, with or without filter columns to name.
    """

    MISSING_INDEX = "missing_index"
    SEQUENTIAL_SCAN_LARGE_TABLE = "sequential_scan_large_table"
    INEFFICIENT_JOIN = "inefficient_join"
    SORT_SPILL_RISK = "sort_spill_risk"
    UNUSED_INDEX_HINT = "unused_index_hint"
    OTHER = "other"


@dataclass(frozen=True)
class Suggestion:
    """One actionable recommendation tied to a plan node."""
    suggestion_type: SuggestionType
    severity: Severity
    title: str
    description: str
    recommendation: str
    impact: str
    node_index: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "suggestion_type": self.suggestion_type.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "recommendation": self.recommendation,
            "impact": self.impact,
            "node_index": self.node_index,
        }


@dataclass(frozen=True)
class AnalysisSummary:
    total_suggestions: int = 0
    high_severity_count: int = 0
    total_cost: float = 0.0
    most_expensive_operation: str = "Unknown"
    potential_improvement: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_suggestions": self.total_suggestions,
            "high_severity_count": self.high_severity_count,
            "total_cost": self.total_cost,
            "most_expensive_operation": self.most_expensive_operation,
            "potential_improvement": self.potential_improvement,
        }


@dataclass(frozen=True)
class AdvisorAnalysis:
    """Advisor output for one plan.

    Suggestions are ordered High -> Medium -> Low, then by the node's
    pre-order position.
    """
    suggestions: tuple[Suggestion, ...] = ()
    performance_score: int = 100
    summary: AnalysisSummary = field(default_factory=AnalysisSummary)

    def __post_init__(self) -> None:
        object.__setattr__(self, "suggestions", tuple(self.suggestions))

    def by_severity(self, severity: Severity) -> list[Suggestion]:
        return [s for s in self.suggestions if s.severity == severity]

    def for_node(self, node_index: int) -> list[Suggestion]:
        return [s for s in self.suggestions if s.node_index == node_index]

    @property
    def top_suggestion(self) -> Optional[Suggestion]:
        return self.suggestions[0] if self.suggestions else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "suggestions": [s.to_dict() for s in self.suggestions],
            "performance_score": self.performance_score,
            "summary": self.summary.to_dict(),
        }
