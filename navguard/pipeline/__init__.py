"""Navigation decision pipeline for NavGuard."""

from .engine import (
    Decision,
    DecisionEngine,
    NavigationEvent,
    Navigator,
    Outcome,
    Stage,
    Verdict,
    VerdictSource,
)
from .scheduler import AllowlistRefreshScheduler

__all__ = [
    "AllowlistRefreshScheduler",
    "Decision",
    "DecisionEngine",
    "NavigationEvent",
    "Navigator",
    "Outcome",
    "Stage",
    "Verdict",
    "VerdictSource",
]
