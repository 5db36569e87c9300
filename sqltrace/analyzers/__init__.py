"""Plan advisor: rules, scoring and result schemas."""

from .advisor import AdvisorConfig, AdvisorEngine, RuleKind, analyze_plan, filter_columns
from .schemas import AdvisorAnalysis, AnalysisSummary, Severity, Suggestion, SuggestionType

__all__ = [
    "AdvisorConfig",
    "AdvisorEngine",
    "RuleKind",
    "analyze_plan",
    "filter_columns",
    "AdvisorAnalysis",
    "AnalysisSummary",
    "Severity",
    "Suggestion",
    "SuggestionType",
]
