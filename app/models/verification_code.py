from beanie import Document
from datetime import datetime
from typing import Optional
import pymongo
from pymongo import IndexModel

from app.schemas.attendance import VerificationCode


class VerificationCodeDocument(Document):
    session_id: str
    student_id: str
    code: str
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False
    consumed_at: Optional[datetime] = None
    # True while the code may still be handed out or consumed; never deleted for audit
    live: bool = True

    class Settings:
        name = "verification_codes"
        indexes = [
            IndexModel(
                [("session_id", pymongo.ASCENDING), ("student_id", pymongo.ASCENDING)],
                unique=True,
                partialFilterExpression={"live": True},
                name="one_live_code_per_pair",
            ),
            IndexModel(
                [("session_id", pymongo.ASCENDING), ("student_id", pymongo.ASCENDING), ("issued_at", pymongo.DESCENDING)],
                name="codes_by_pair",
            ),
        ]

    def to_domain(self) -> VerificationCode:
        return VerificationCode(**self.model_dump(include=set(VerificationCode.model_fields)))
