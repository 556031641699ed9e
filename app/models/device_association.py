from beanie import Document
from datetime import datetime
from typing import Optional
import pymongo
from pymongo import IndexModel

from app.schemas.security import Association


class DeviceAssociation(Document):
    device_fingerprint: str
    network_identity: str
    browser_fingerprint: Optional[str] = None
    student_id: str
    session_id: str
    timestamp: datetime
    score: Optional[int] = None
    accepted: bool = False

    class Settings:
        name = "device_associations"
        indexes = [
            IndexModel([("device_fingerprint", pymongo.ASCENDING), ("timestamp", pymongo.DESCENDING)]),
            IndexModel([("network_identity", pymongo.ASCENDING), ("timestamp", pymongo.DESCENDING)]),
            IndexModel([("student_id", pymongo.ASCENDING), ("timestamp", pymongo.DESCENDING)]),
            IndexModel([("timestamp", pymongo.ASCENDING)]),
        ]

    def to_domain(self) -> Association:
        return Association(**self.model_dump(exclude={"id", "revision_id"}))
