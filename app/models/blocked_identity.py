from beanie import Document
from datetime import datetime
import pymongo
from pymongo import IndexModel

from app.schemas.security import BlockedIdentity, IdentityKind


class BlockedIdentityDocument(Document):
    kind: IdentityKind
    identity: str
    reason: str
    blocked_at: datetime

    class Settings:
        name = "blocked_identities"
        indexes = [
            IndexModel([("kind", pymongo.ASCENDING), ("identity", pymongo.ASCENDING)], unique=True),
        ]

    def to_domain(self) -> BlockedIdentity:
        return BlockedIdentity(**self.model_dump(exclude={"id", "revision_id"}))
