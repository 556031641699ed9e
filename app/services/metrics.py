from datetime import datetime, timedelta
from statistics import mean
from typing import Any, Dict, List

from app.repositories.base import AssociationRepository, IncidentRepository
from app.schemas.security import BLOCK_INCIDENTS, Association, SecurityIncident
from app.utils.clock import Clock

TIMEFRAMES = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
}


def _average(items: List[Association]) -> int:
    scores = [a.score for a in items if a.scored]
    return round(mean(scores)) if scores else 0


def risk_distribution(attempts: List[Association]) -> Dict[str, int]:
    buckets = {"low": 0, "medium": 0, "high": 0, "critical": 0}
    for attempt in attempts:
        if not attempt.scored:
            continue
        if attempt.score >= 80:
            buckets["low"] += 1
        elif attempt.score >= 60:
            buckets["medium"] += 1
        elif attempt.score >= 40:
            buckets["high"] += 1
        else:
            buckets["critical"] += 1
    return buckets


def _timeline(start: datetime, hours: int, attempts: List[Association], blocks: List[SecurityIncident]):
    timeline = []
    for i in range(hours):
        hour_start = start + timedelta(hours=i)
        hour_end = hour_start + timedelta(hours=1)
        in_hour = [a for a in attempts if hour_start <= a.timestamp < hour_end]
        timeline.append({
            "timestamp": hour_start.isoformat(),
            "attempts": len(in_hour),
            "blocked_count": sum(1 for b in blocks if hour_start <= b.created_at < hour_end),
            "average_score": _average(in_hour),
        })
    return timeline


async def security_metrics(
    associations: AssociationRepository,
    incidents: IncidentRepository,
    clock: Clock,
    timeframe: str = "24h",
) -> Dict[str, Any]:
    """Attempt, block and score aggregates for the dashboard over the last ``timeframe``."""
    window = TIMEFRAMES.get(timeframe, TIMEFRAMES["24h"])
    now = clock.now()
    since = now - window

    attempts = await associations.since(since)
    blocks = await incidents.created_since(since, BLOCK_INCIDENTS)
    hours = int(window.total_seconds() // 3600)

    return {
        "total_attempts": len(attempts),
        "successful_attempts": sum(1 for a in attempts if a.accepted),
        "blocked_attempts": len(blocks),
        "average_security_score": _average(attempts),
        "risk_distribution": risk_distribution(attempts),
        "timeline": _timeline(now - timedelta(hours=hours), hours, attempts, blocks),
        "timeframe": timeframe if timeframe in TIMEFRAMES else "24h",
        "generated_at": now.isoformat(),
    }
