from beanie import Document, Indexed
from pydantic import Field
from datetime import datetime
from typing import Optional

from app.schemas.session import ClassSessionInfo, GeoPoint, SessionState


class ClassSession(Document):
    """Live class session, written by the scheduling side and only read here."""
    session_id: Indexed(str, unique=True)
    class_name: Optional[str] = None
    room_number: Optional[str] = None
    state: SessionState = SessionState.active
    expected_location: Optional[GeoPoint] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "class_sessions"

    def to_info(self) -> ClassSessionInfo:
        return ClassSessionInfo(
            id=self.session_id,
            state=self.state,
            created_at=self.created_at,
            expected_location=self.expected_location,
        )
