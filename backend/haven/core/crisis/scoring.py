"""
Score Calculator - signals to a 0-100 crisis score and severity tier.

Pure and deterministic; safe to call anywhere.
"""

from dataclasses import dataclass

from haven.core.crisis.signals import Signals
from haven.core.models import Severity


@dataclass(frozen=True)
class ScoreCalculation:
    """Result of scoring one signal vector."""
    score: int
    severity: Severity


# Weighted-sum policy. Tunable; the thresholds below are the contract.
WEIGHTS = {
    "red_zone_day": 10,
    "high_risk_message": 5,
    "gottman_violation": 3,
    "disengaged_day": 15,
    "conflict": 4,
}
DISENGAGEMENT_CAP = 30
MAX_SCORE = 100

# Severity bands on the raw score
CRITICAL_SCORE = 75
HIGH_SCORE = 50
MODERATE_SCORE = 25

# Signal thresholds that force a tier regardless of score
SUSTAINED_RED_ZONE_DAYS = 3
HIGH_RISK_MESSAGE_THRESHOLD = 5
GOTTMAN_VIOLATION_THRESHOLD = 5
DISENGAGEMENT_HOURS_THRESHOLD = 48
CONFLICT_FREQUENCY_THRESHOLD = 5


def weighted_score(signals: Signals) -> int:
    """Weighted sum of the signals, clamped to [0, 100]."""
    disengaged_days = int(max(signals.disengagement_hours, 0.0) // 24)

    score = (
        max(signals.red_zone_days, 0) * WEIGHTS["red_zone_day"]
        + max(signals.high_risk_messages, 0) * WEIGHTS["high_risk_message"]
        + max(signals.gottman_violations, 0) * WEIGHTS["gottman_violation"]
        + min(disengaged_days * WEIGHTS["disengaged_day"], DISENGAGEMENT_CAP)
        + max(signals.conflict_frequency, 0) * WEIGHTS["conflict"]
    )
    return max(0, min(score, MAX_SCORE))


def classify(score: int, signals: Signals) -> Severity:
    """
    Map a score plus signal thresholds to a severity tier.

    Each tier matches on its score band or its own signal condition; the
    most severe match wins.
    """
    if score >= CRITICAL_SCORE or (
        signals.red_zone_days >= SUSTAINED_RED_ZONE_DAYS and signals.mutual_red_zone
    ):
        return Severity.CRITICAL

    if (
        score >= HIGH_SCORE
        or signals.high_risk_messages >= HIGH_RISK_MESSAGE_THRESHOLD
        or signals.gottman_violations >= GOTTMAN_VIOLATION_THRESHOLD
        or signals.disengagement_hours >= DISENGAGEMENT_HOURS_THRESHOLD
    ):
        return Severity.HIGH

    if score >= MODERATE_SCORE or signals.conflict_frequency >= CONFLICT_FREQUENCY_THRESHOLD:
        return Severity.MODERATE

    return Severity.LOW


def calculate(signals: Signals) -> ScoreCalculation:
    """Score and classify a signal vector."""
    score = weighted_score(signals)
    return ScoreCalculation(score=score, severity=classify(score, signals))
