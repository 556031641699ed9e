from beanie import Document
from datetime import datetime
from typing import Optional, Dict, Any
import pymongo
from pymongo import IndexModel

from app.schemas.security import IncidentType, SecurityIncident, Severity


class SecurityIncidentDocument(Document):
    incident_id: str
    type: IncidentType
    severity: Severity
    reason: str
    session_id: Optional[str] = None
    student_id: Optional[str] = None
    roll_number: Optional[str] = None
    device_fingerprint: Optional[str] = None
    network_identity: Optional[str] = None
    evidence: Dict[str, Any] = {}
    created_at: datetime
    resolved: bool = False
    resolution: Optional[str] = None
    resolved_at: Optional[datetime] = None

    class Settings:
        name = "security_incidents"
        indexes = [
            IndexModel([("incident_id", pymongo.ASCENDING)], unique=True),
            IndexModel([("created_at", pymongo.DESCENDING)]),
            IndexModel([("session_id", pymongo.ASCENDING), ("created_at", pymongo.DESCENDING)]),
        ]

    @classmethod
    def from_domain(cls, incident: SecurityIncident) -> "SecurityIncidentDocument":
        data = incident.model_dump()
        data["incident_id"] = data.pop("id")
        return cls(**data)

    def to_domain(self) -> SecurityIncident:
        data = self.model_dump(exclude={"id", "revision_id"})
        data["id"] = data.pop("incident_id")
        return SecurityIncident(**data)
