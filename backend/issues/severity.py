"""
Delivery issue severity scoring.

Score = base by issue type, adjusted by description keywords (first matching
tier only) and by shipment context, clamped to [0, 1] and rounded to 2 dp.
"""

BASE_SCORES = {
    "damaged": 0.8,
    "missing": 0.8,
    "wrong_address": 0.6,
    "missed_delivery": 0.6,
    "delay": 0.4,
    "other": 0.5,
}

CRITICAL_KEYWORDS = ("urgent", "critical", "emergency", "lost", "stolen", "destroyed", "completely")
HIGH_KEYWORDS = ("important", "time sensitive", "damaged", "broken", "missing items")
LOW_KEYWORDS = ("minor", "slight", "small", "little")

# Filter bands used by the issues listing: name -> [lower, upper)
SEVERITY_BANDS = {
    "critical": (0.8, None),
    "high": (0.6, 0.8),
    "medium": (0.4, 0.6),
    "low": (None, 0.4),
}


def calculate_severity_score(
    issue_type: str,
    description: str,
    is_vip: bool = False,
    sla_risk_score: float | None = None,
) -> float:
    score = BASE_SCORES.get(issue_type, 0.5)

    text = description.lower()
    if any(keyword in text for keyword in CRITICAL_KEYWORDS):
        score = min(1.0, score + 0.15)
    elif any(keyword in text for keyword in HIGH_KEYWORDS):
        score = min(1.0, score + 0.1)
    elif any(keyword in text for keyword in LOW_KEYWORDS):
        score = max(0.2, score - 0.1)

    if is_vip:
        score = min(1.0, score + 0.1)
    if sla_risk_score and sla_risk_score > 0.7:
        score = min(1.0, score + 0.05)

    return round(score, 2)


def classify_severity(score: float) -> str:
    """Band name for a severity score."""
    for name, (lower, upper) in SEVERITY_BANDS.items():
        if (lower is None or score >= lower) and (upper is None or score < upper):
            return name
    return "low"
