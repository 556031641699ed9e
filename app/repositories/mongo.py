"""
MongoDB implementations of the repositories, built on the Beanie documents.

Atomicity comes from MongoDB itself: a code claim is a single
``find_one_and_update`` and both "one live code per pair" and "one attendance
record per pair" are unique indexes, so a lost race surfaces as a
``DuplicateKeyError`` rather than as a second row.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional, Sequence

import pymongo
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.errors import StorageUnavailable
from app.models.attendance_record import AttendanceRecordDocument
from app.models.blocked_identity import BlockedIdentityDocument
from app.models.class_session import ClassSession
from app.models.device_association import DeviceAssociation
from app.models.security_incident import SecurityIncidentDocument
from app.models.student import Student
from app.models.verification_code import VerificationCodeDocument
from app.repositories.base import (
    AssociationRepository,
    AttendanceRepository,
    BlockListRepository,
    CodeRepository,
    IncidentRepository,
    SessionDirectory,
    StudentDirectory,
)
from app.schemas.attendance import AttendanceRecord, VerificationCode
from app.schemas.security import (
    Association,
    BlockedIdentity,
    IdentityKind,
    IncidentType,
    SecurityIncident,
    Severity,
)
from app.schemas.session import ClassSessionInfo

logger = logging.getLogger(__name__)


@asynccontextmanager
async def storage_guard(operation: str):
    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as e:
        logger.error(f"❌ MongoDB failure during {operation}: {e}")
        raise StorageUnavailable(f"Storage unavailable during {operation}") from e


class MongoSessionDirectory(SessionDirectory):
    async def get_session(self, session_id: str) -> Optional[ClassSessionInfo]:
        async with storage_guard("session lookup"):
            session = await ClassSession.find_one(ClassSession.session_id == session_id)
        return session.to_info() if session else None


class MongoStudentDirectory(StudentDirectory):
    async def resolve_student(self, roll_number: str) -> Optional[str]:
        async with storage_guard("student lookup"):
            student = await Student.find_one(Student.roll_number == roll_number, Student.is_active == True)  # noqa: E712
        return student.student_id if student else None


class MongoCodeRepository(CodeRepository):
    def _collection(self):
        return VerificationCodeDocument.get_motor_collection()

    async def _retire_expired(self, session_id: str, student_id: str, now: datetime) -> None:
        await self._collection().update_many(
            {"session_id": session_id, "student_id": student_id, "live": True, "expires_at": {"$lte": now}},
            {"$set": {"live": False}},
        )

    async def find_live(self, session_id: str, student_id: str, now: datetime) -> Optional[VerificationCode]:
        async with storage_guard("code lookup"):
            doc = await VerificationCodeDocument.find_one(
                {"session_id": session_id, "student_id": student_id, "live": True, "expires_at": {"$gt": now}}
            )
        return doc.to_domain() if doc else None

    async def insert_live(self, code: VerificationCode, now: datetime) -> VerificationCode:
        async with storage_guard("code issue"):
            await self._retire_expired(code.session_id, code.student_id, now)
            try:
                await VerificationCodeDocument(**code.model_dump(), live=True).insert()
                return code
            except DuplicateKeyError:
                logger.info(f"🔁 Concurrent code issue for session={code.session_id} student={code.student_id}, reusing live code")
            existing = await self.find_live(code.session_id, code.student_id, now)
        if existing is None:
            raise StorageUnavailable("Live code vanished while issuing, retry")
        return existing

    async def claim(self, session_id: str, student_id: str, code: str, now: datetime) -> bool:
        async with storage_guard("code claim"):
            doc = await self._collection().find_one_and_update(
                {
                    "session_id": session_id,
                    "student_id": student_id,
                    "code": code,
                    "live": True,
                    "consumed": False,
                    "expires_at": {"$gt": now},
                },
                {"$set": {"consumed": True, "consumed_at": now, "live": False}},
            )
        return doc is not None

    async def find_by_value(self, session_id: str, student_id: str, code: str) -> Optional[VerificationCode]:
        async with storage_guard("code lookup"):
            docs = await VerificationCodeDocument.find(
                {"session_id": session_id, "student_id": student_id, "code": code}
            ).sort([("issued_at", pymongo.DESCENDING)]).limit(1).to_list()
        return docs[0].to_domain() if docs else None

    async def release(self, session_id: str, student_id: str, code: str, claimed_at: datetime) -> bool:
        async with storage_guard("code release"):
            try:
                # consumed_at pins the exact claim, BSON truncates both sides to milliseconds alike
                result = await self._collection().update_one(
                    {
                        "session_id": session_id,
                        "student_id": student_id,
                        "code": code,
                        "consumed": True,
                        "consumed_at": claimed_at,
                    },
                    {"$set": {"consumed": False, "consumed_at": None, "live": True}},
                )
            except DuplicateKeyError:
                # a newer code went live meanwhile, this one stays dead
                return False
        return result.modified_count == 1


class MongoAttendanceRepository(AttendanceRepository):
    async def exists(self, session_id: str, student_id: str) -> bool:
        async with storage_guard("attendance lookup"):
            found = await AttendanceRecordDocument.find_one(
                AttendanceRecordDocument.session_id == session_id,
                AttendanceRecordDocument.student_id == student_id,
            )
        return found is not None

    async def insert_if_absent(self, record: AttendanceRecord) -> bool:
        async with storage_guard("attendance commit"):
            try:
                await AttendanceRecordDocument.from_domain(record).insert()
            except DuplicateKeyError:
                return False
        return True

    async def for_session(self, session_id: str) -> List[AttendanceRecord]:
        async with storage_guard("attendance listing"):
            docs = await AttendanceRecordDocument.find(
                AttendanceRecordDocument.session_id == session_id
            ).sort(-AttendanceRecordDocument.timestamp).to_list()
        return [d.to_domain() for d in docs]

    async def for_student(self, student_id: str, limit: int = 20) -> List[AttendanceRecord]:
        async with storage_guard("attendance history"):
            docs = await AttendanceRecordDocument.find(
                AttendanceRecordDocument.student_id == student_id
            ).sort(-AttendanceRecordDocument.timestamp).limit(limit).to_list()
        return [d.to_domain() for d in docs]


_IDENTITY_FIELD = {
    IdentityKind.device: "device_fingerprint",
    IdentityKind.network: "network_identity",
    IdentityKind.student: "student_id",
}


class MongoAssociationRepository(AssociationRepository):
    async def append(self, association: Association) -> None:
        async with storage_guard("association append"):
            await DeviceAssociation(**association.model_dump()).insert()

    async def history(self, kind: IdentityKind, value: str, since: datetime, limit: Optional[int] = None) -> List[Association]:
        query = DeviceAssociation.find(
            {_IDENTITY_FIELD[kind]: value, "timestamp": {"$gt": since}}
        ).sort(-DeviceAssociation.timestamp)
        if limit is not None:
            query = query.limit(limit)
        async with storage_guard("association history"):
            docs = await query.to_list()
        return [d.to_domain() for d in docs]

    async def since(self, since: datetime) -> List[Association]:
        async with storage_guard("association scan"):
            docs = await DeviceAssociation.find(
                {"timestamp": {"$gte": since}}
            ).sort(+DeviceAssociation.timestamp).to_list()
        return [d.to_domain() for d in docs]


class MongoBlockListRepository(BlockListRepository):
    async def add(self, entry: BlockedIdentity) -> None:
        async with storage_guard("block"):
            try:
                await BlockedIdentityDocument(**entry.model_dump()).insert()
            except DuplicateKeyError:
                pass  # already blocked

    async def remove(self, kind: IdentityKind, identity: str) -> None:
        async with storage_guard("unblock"):
            await BlockedIdentityDocument.find(
                BlockedIdentityDocument.kind == kind,
                BlockedIdentityDocument.identity == identity,
            ).delete()

    async def contains(self, kind: IdentityKind, identity: str) -> bool:
        async with storage_guard("block lookup"):
            found = await BlockedIdentityDocument.find_one(
                BlockedIdentityDocument.kind == kind,
                BlockedIdentityDocument.identity == identity,
            )
        return found is not None

    async def all(self) -> List[BlockedIdentity]:
        async with storage_guard("block listing"):
            docs = await BlockedIdentityDocument.find_all().sort(-BlockedIdentityDocument.blocked_at).to_list()
        return [d.to_domain() for d in docs]


class MongoIncidentRepository(IncidentRepository):
    async def append(self, incident: SecurityIncident) -> None:
        async with storage_guard("incident append"):
            await SecurityIncidentDocument.from_domain(incident).insert()

    async def get(self, incident_id: str) -> Optional[SecurityIncident]:
        async with storage_guard("incident lookup"):
            doc = await SecurityIncidentDocument.find_one(SecurityIncidentDocument.incident_id == incident_id)
        return doc.to_domain() if doc else None

    async def mark_resolved(self, incident_id: str, resolution: str, resolved_at: datetime) -> Optional[SecurityIncident]:
        async with storage_guard("incident resolve"):
            doc = await SecurityIncidentDocument.find_one(SecurityIncidentDocument.incident_id == incident_id)
            if doc is None:
                return None
            doc.resolved = True
            doc.resolution = resolution
            doc.resolved_at = resolved_at
            await doc.save()
        return doc.to_domain()

    async def query(
        self,
        severity: Optional[Severity] = None,
        type: Optional[IncidentType] = None,
        resolved: Optional[bool] = None,
        session_id: Optional[str] = None,
        limit: int = 20,
    ) -> List[SecurityIncident]:
        filters = {}
        if severity is not None:
            filters["severity"] = severity.value
        if type is not None:
            filters["type"] = type.value
        if resolved is not None:
            filters["resolved"] = resolved
        if session_id is not None:
            filters["session_id"] = session_id
        async with storage_guard("incident query"):
            docs = await SecurityIncidentDocument.find(filters).sort(
                -SecurityIncidentDocument.created_at
            ).limit(limit).to_list()
        return [d.to_domain() for d in docs]

    async def created_since(self, since: datetime, types: Sequence[IncidentType]) -> List[SecurityIncident]:
        async with storage_guard("incident scan"):
            docs = await SecurityIncidentDocument.find(
                {"created_at": {"$gte": since}, "type": {"$in": [t.value for t in types]}}
            ).to_list()
        return [d.to_domain() for d in docs]
