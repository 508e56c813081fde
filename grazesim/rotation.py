"""
Rotation history helpers
Read-only views over the persisted rotation record
"""

from datetime import date
from typing import Any, Dict, Optional

from grazesim.models import ForageThresholds, RotationHistory

FORAGE_STATUS_LABELS = {
    "critical": "Critical - Hay Needed",
    "low": "Low - Monitor Closely",
    "marginal": "Marginal",
    "healthy": "Healthy",
    "excellent": "Excellent",
}


def get_current_paddock(history: RotationHistory, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Where the herd is now and for how long

    Returns:
        {id, name, since, days_since}
    """
    today = today or date.today()
    current = history.current_paddock
    return {
        "id": current.id,
        "name": current.name,
        "since": current.since.isoformat(),
        "days_since": (today - current.since).days,
    }


def get_forage_status(forage: float, thresholds: Optional[ForageThresholds] = None) -> Dict[str, str]:
    """
    Classify a forage level (lb/acre)

    Returns:
        {status, label}; status is one of critical, low, marginal, healthy, excellent
    """
    t = thresholds or ForageThresholds()
    if forage < t.critical:
        status = "critical"
    elif forage < t.low:
        status = "low"
    elif forage < t.marginal:
        status = "marginal"
    elif forage < t.healthy:
        status = "healthy"
    else:
        status = "excellent"
    return {"status": status, "label": FORAGE_STATUS_LABELS[status]}
