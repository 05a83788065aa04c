"""
Haven Crisis Detection & Intervention Engine
============================================

Turns a trailing window of couple signals into a 0-100 crisis score, a
severity tier, and graduated, idempotent interventions.

Components:
- SignalAggregator: check-ins, message tone and conflicts -> Signals
- calculate: Signals -> score + severity (pure)
- ScoreStore: append-only score timeseries
- InterventionRuleEngine: severity -> interventions, at most one open per type
- CoolingOffManager: enforced pauses with lazy expiry
- SafetyCheckService: wellbeing prompts to one partner
- run_sweep / recompute_couple: batch and on-demand entry points
"""

from haven.core.crisis.cooling_off import CoolingOffManager
from haven.core.crisis.errors import (
    AlreadyResolvedError,
    CoolingOffActiveError,
    CoupleNotFoundError,
    CrisisError,
    CrisisStorageError,
    RecordNotFoundError,
)
from haven.core.crisis.hotlines import Hotline, list_hotlines
from haven.core.crisis.interventions import (
    InterventionRuleEngine,
    InterventionSpec,
    InterventionStore,
    decide,
    resolve_intervention,
)
from haven.core.crisis.notifier import InterventionNotifier
from haven.core.crisis.pipeline import (
    CoupleOutcome,
    ScoreResult,
    compute_score,
    is_in_cooling_off,
    recompute_couple,
    try_compute_score,
)
from haven.core.crisis.safety_checks import SafetyCheckService
from haven.core.crisis.score_store import ScoreStore
from haven.core.crisis.scoring import ScoreCalculation, calculate
from haven.core.crisis.signals import SignalAggregator, Signals
from haven.core.crisis.sweep import SweepSummary, run_sweep

__all__ = [
    "AlreadyResolvedError",
    "CoolingOffActiveError",
    "CoolingOffManager",
    "CoupleNotFoundError",
    "CoupleOutcome",
    "CrisisError",
    "CrisisStorageError",
    "Hotline",
    "InterventionNotifier",
    "InterventionRuleEngine",
    "InterventionSpec",
    "InterventionStore",
    "RecordNotFoundError",
    "SafetyCheckService",
    "ScoreCalculation",
    "ScoreResult",
    "ScoreStore",
    "SignalAggregator",
    "Signals",
    "SweepSummary",
    "calculate",
    "compute_score",
    "decide",
    "is_in_cooling_off",
    "list_hotlines",
    "recompute_couple",
    "resolve_intervention",
    "run_sweep",
    "try_compute_score",
]
