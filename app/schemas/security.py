from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum
from uuid import uuid4


class IdentityKind(str, Enum):
    device = "device"
    network = "network"
    student = "student"


class Severity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class IncidentType(str, Enum):
    failed_attempt = "failed_attempt"
    duplicate_submission = "duplicate_submission"
    security_violation = "security_violation"
    device_blocked = "device_blocked"
    network_blocked = "network_blocked"
    device_unblocked = "device_unblocked"
    network_unblocked = "network_unblocked"


BLOCK_INCIDENTS = (IncidentType.device_blocked, IncidentType.network_blocked, IncidentType.security_violation)


class SecurityIncident(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    type: IncidentType
    severity: Severity = Severity.medium
    reason: str
    session_id: Optional[str] = None
    student_id: Optional[str] = None
    roll_number: Optional[str] = None
    device_fingerprint: Optional[str] = None
    network_identity: Optional[str] = None
    evidence: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    resolved: bool = False
    resolution: Optional[str] = None
    resolved_at: Optional[datetime] = None


class Association(BaseModel):
    """
    One admission attempt linking a device, a network identity and a student.

    ``score`` is None for attempts rejected before scoring (bad code, duplicate).
    """
    device_fingerprint: str
    network_identity: str
    browser_fingerprint: Optional[str] = None
    student_id: str
    session_id: str
    timestamp: datetime
    score: Optional[int] = Field(None, ge=0, le=100)
    accepted: bool = False

    @property
    def scored(self) -> bool:
        return self.score is not None

    @property
    def risk(self) -> Optional[int]:
        return 100 - self.score if self.scored else None


class BlockedIdentity(BaseModel):
    kind: IdentityKind
    identity: str
    reason: str
    blocked_at: datetime


class BlockRequest(BaseModel):
    identity: str = Field(..., min_length=1)
    reason: Optional[str] = None


class ResolveRequest(BaseModel):
    resolution: Optional[str] = None


class GeoIpInfo(BaseModel):
    country_code: Optional[str] = None
    proxy: bool = False


class RiskAssessment(BaseModel):
    score: int = Field(..., ge=0, le=100)
    flags: List[str] = Field(default_factory=list)
    blocked: bool = False
    reason: Optional[str] = None
    penalties: Dict[str, int] = Field(default_factory=dict)
