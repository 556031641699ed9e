import logging
from typing import Any, Dict, List, Optional

from app.errors import IncidentNotFound
from app.repositories.base import IncidentRepository
from app.schemas.security import IncidentType, SecurityIncident, Severity
from app.utils.clock import Clock

logger = logging.getLogger(__name__)


class IncidentRecorder:
    """Append-only log of security events. Resolution is the only mutation."""

    def __init__(self, incidents: IncidentRepository, clock: Clock):
        self.incidents = incidents
        self.clock = clock

    async def record(
        self,
        type: IncidentType,
        severity: Severity,
        reason: str,
        *,
        session_id: Optional[str] = None,
        student_id: Optional[str] = None,
        roll_number: Optional[str] = None,
        device_fingerprint: Optional[str] = None,
        network_identity: Optional[str] = None,
        evidence: Optional[Dict[str, Any]] = None,
    ) -> SecurityIncident:
        incident = SecurityIncident(
            type=type,
            severity=severity,
            reason=reason,
            session_id=session_id,
            student_id=student_id,
            roll_number=roll_number,
            device_fingerprint=device_fingerprint,
            network_identity=network_identity,
            evidence=evidence or {},
            created_at=self.clock.now(),
        )
        await self.incidents.append(incident)
        logger.info(f"🚨 Incident {type.value} ({severity.value}): {reason} session={session_id} roll={roll_number}")
        return incident

    async def resolve(self, incident_id: str, resolution: Optional[str] = None) -> SecurityIncident:
        resolved = await self.incidents.mark_resolved(
            incident_id, resolution or "Resolved by admin", self.clock.now()
        )
        if resolved is None:
            raise IncidentNotFound(incident_id)
        return resolved

    async def alerts(
        self,
        severity: Optional[Severity] = None,
        type: Optional[IncidentType] = None,
        resolved: Optional[bool] = None,
        session_id: Optional[str] = None,
        limit: int = 20,
    ) -> List[SecurityIncident]:
        return await self.incidents.query(
            severity=severity, type=type, resolved=resolved, session_id=session_id, limit=limit
        )
