"""
National Early Warning Score 2.

Each vital sign contributes an independent band score and the total is
their sum. A score is only produced when every scored vital is present.
"""

import math
from collections.abc import Iterable
from enum import Enum

from eventmed.models import Consciousness, VitalsSnapshot

REQUIRED_FIELDS = (
    "respiratory_rate",
    "spo2",
    "blood_pressure",
    "heart_rate",
    "consciousness",
    "temperature",
)


class RiskBand(Enum):
    UNKNOWN = ("unknown", "bg-gray-400")
    LOW = ("low", "bg-green-500")
    LOW_MEDIUM = ("low-medium", "bg-yellow-500")
    MEDIUM = ("medium", "bg-orange-500")
    HIGH = ("high", "bg-red-600")

    def __init__(self, label: str, colour: str) -> None:
        self.label = label
        self.colour = colour


def systolic_pressure(blood_pressure: str) -> int | None:
    """Parse the systolic value out of a "sys/dia" reading."""
    head = blood_pressure.split("/", 1)[0].strip()
    try:
        return int(float(head))
    except (ValueError, OverflowError):
        return None


def _respiratory_rate(rr: int) -> int:
    if rr <= 8:
        return 3
    if rr <= 11:
        return 1
    if rr <= 20:
        return 0
    if rr <= 24:
        return 2
    return 3


def _spo2(spo2: int) -> int:
    if spo2 <= 91:
        return 3
    if spo2 <= 93:
        return 2
    if spo2 <= 95:
        return 1
    return 0


def _systolic(sbp: int) -> int:
    if sbp <= 90:
        return 3
    if sbp <= 100:
        return 2
    if sbp <= 110:
        return 1
    if sbp <= 219:
        return 0
    return 3


def _heart_rate(hr: int) -> int:
    if hr <= 40:
        return 3
    if hr <= 50:
        return 1
    if hr <= 90:
        return 0
    if hr <= 110:
        return 1
    if hr <= 130:
        return 2
    return 3


def _temperature(temp: float) -> int:
    if temp <= 35.0:
        return 3
    if temp <= 36.0:
        return 1
    if temp <= 38.0:
        return 0
    if temp <= 39.0:
        return 1
    return 2


def news2_breakdown(vitals: VitalsSnapshot) -> dict[str, int] | None:
    """
    Per-parameter sub-scores, or None when the score can't be computed.

    An unreadable blood pressure or a non-finite temperature makes the whole
    score indeterminate rather than silently scoring it.
    """
    if any(getattr(vitals, name) is None for name in REQUIRED_FIELDS):
        return None
    if not math.isfinite(vitals.temperature):
        return None

    sbp = systolic_pressure(vitals.blood_pressure)
    if sbp is None:
        return None

    return {
        "respiratory_rate": _respiratory_rate(vitals.respiratory_rate),
        "spo2": _spo2(vitals.spo2),
        "supplemental_oxygen": 2 if vitals.on_oxygen else 0,
        "systolic_bp": _systolic(sbp),
        "heart_rate": _heart_rate(vitals.heart_rate),
        "consciousness": (
            0 if vitals.consciousness == Consciousness.ALERT else 3
        ),
        "temperature": _temperature(vitals.temperature),
    }


def compute_news2(vitals: VitalsSnapshot) -> int | None:
    breakdown = news2_breakdown(vitals)
    if breakdown is None:
        return None
    return sum(breakdown.values())


def risk_band(score: int | None) -> RiskBand:
    if score is None:
        return RiskBand.UNKNOWN
    if score >= 7:
        return RiskBand.HIGH
    if score >= 5:
        return RiskBand.MEDIUM
    if score >= 1:
        return RiskBand.LOW_MEDIUM
    return RiskBand.LOW


def score_observations(
    observations: Iterable[VitalsSnapshot],
) -> list[VitalsSnapshot]:
    """Copy each observation with its ``news2`` field recalculated."""
    return [
        obs.model_copy(update={"news2": compute_news2(obs)})
        for obs in observations
    ]
