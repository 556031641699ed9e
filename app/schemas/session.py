from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from enum import Enum


class SessionState(str, Enum):
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class GeoPoint(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class ClassSessionInfo(BaseModel):
    """Read-only view of a class session owned by the scheduling side."""
    id: str
    state: SessionState
    created_at: Optional[datetime] = None
    expected_location: Optional[GeoPoint] = None

    @property
    def is_live(self) -> bool:
        return self.state == SessionState.active
