from beanie import Document
from datetime import datetime
from typing import Optional, List
import pymongo
from pymongo import IndexModel

from app.schemas.attendance import AttendanceRecord
from app.schemas.session import GeoPoint


class AttendanceRecordDocument(Document):
    record_id: str
    session_id: str
    student_id: str
    roll_number: str
    timestamp: datetime
    risk_score: int
    flags: List[str] = []
    device_fingerprint: str
    network_identity: str
    browser_fingerprint: Optional[str] = None
    geo_location: Optional[GeoPoint] = None

    class Settings:
        name = "attendance_records"
        indexes = [
            IndexModel(
                [("session_id", pymongo.ASCENDING), ("student_id", pymongo.ASCENDING)],
                unique=True,
                name="one_record_per_pair",
            ),
            IndexModel([("student_id", pymongo.ASCENDING), ("timestamp", pymongo.DESCENDING)]),
        ]

    @classmethod
    def from_domain(cls, record: AttendanceRecord) -> "AttendanceRecordDocument":
        data = record.model_dump()
        data["record_id"] = data.pop("id")
        return cls(**data)

    def to_domain(self) -> AttendanceRecord:
        data = self.model_dump(exclude={"id", "revision_id"})
        data["id"] = data.pop("record_id")
        return AttendanceRecord(**data)
