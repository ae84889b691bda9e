"""Pattern discovery, naming, persistence and editing."""

from transit_patterns.services.patterns.builder import PatternBuilder
from transit_patterns.services.patterns.editor import PatternEditor
from transit_patterns.services.patterns.errors import (
    InterpolationError,
    MissingReferenceIdError,
    PatternBusyError,
    PatternError,
    PatternPersistenceError,
    ReconciliationError,
)
from transit_patterns.services.patterns.feed import FeedReader
from transit_patterns.services.patterns.finder import Pattern, PatternFinder, discover_patterns
from transit_patterns.services.patterns.key import PatternKey
from transit_patterns.services.patterns.namer import rename_patterns
from transit_patterns.services.patterns.normalization import StopTimeNormalizer
from transit_patterns.services.patterns.reconciliation import (
    PatternReconciler,
    apply_reconciliation,
    stage_reconciliation,
)
from transit_patterns.services.patterns.runner import PatternBuildRunner

__all__ = [
    "FeedReader",
    "InterpolationError",
    "MissingReferenceIdError",
    "Pattern",
    "PatternBuildRunner",
    "PatternBuilder",
    "PatternBusyError",
    "PatternEditor",
    "PatternError",
    "PatternFinder",
    "PatternKey",
    "PatternPersistenceError",
    "PatternReconciler",
    "ReconciliationError",
    "StopTimeNormalizer",
    "apply_reconciliation",
    "discover_patterns",
    "rename_patterns",
    "stage_reconciliation",
]
