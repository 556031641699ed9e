from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from uuid import uuid4

from app.schemas.session import GeoPoint


class CodeRequest(BaseModel):
    session_id: str
    roll_number: str = Field(..., min_length=1)


class IssuedCode(BaseModel):
    code: str
    expires_at: datetime


class AttendanceSubmission(BaseModel):
    roll_number: str = Field(..., min_length=1)
    code: str
    session_id: str
    device_fingerprint: str = Field(..., min_length=1)
    network_identity: str = Field(..., min_length=1)
    browser_fingerprint: Optional[str] = None
    geo_location: Optional[GeoPoint] = None


class VerificationCode(BaseModel):
    session_id: str
    student_id: str
    code: str
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False
    consumed_at: Optional[datetime] = None

    def is_live_at(self, now: datetime) -> bool:
        return not self.consumed and now < self.expires_at


class AttendanceRecord(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    session_id: str
    student_id: str
    roll_number: str
    timestamp: datetime
    risk_score: int = Field(..., ge=0, le=100)
    flags: List[str] = Field(default_factory=list)
    device_fingerprint: str
    network_identity: str
    browser_fingerprint: Optional[str] = None
    geo_location: Optional[GeoPoint] = None
