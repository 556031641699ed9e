"""
In-process implementations of the repositories.

Each atomic primitive runs its check and its write inside one ``KeyedLock``
section keyed by the ``(session_id, student_id)`` pair, with no await in
between, so concurrent callers for the same pair serialize and callers for
other pairs do not wait on each other.
"""
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

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
from app.utils.keyed_lock import KeyedLock

Pair = Tuple[str, str]


class MemorySessionDirectory(SessionDirectory):
    def __init__(self, sessions: Optional[List[ClassSessionInfo]] = None):
        self.sessions: Dict[str, ClassSessionInfo] = {s.id: s for s in sessions or []}

    def put(self, session: ClassSessionInfo) -> None:
        self.sessions[session.id] = session

    async def get_session(self, session_id: str) -> Optional[ClassSessionInfo]:
        return self.sessions.get(session_id)


class MemoryStudentDirectory(StudentDirectory):
    def __init__(self, students: Optional[Dict[str, str]] = None):
        # roll number -> student id
        self.students: Dict[str, str] = dict(students or {})

    async def resolve_student(self, roll_number: str) -> Optional[str]:
        return self.students.get(roll_number)


class MemoryCodeRepository(CodeRepository):
    def __init__(self):
        self._codes: Dict[Pair, List[VerificationCode]] = defaultdict(list)
        self._locks = KeyedLock()

    def _live(self, pair: Pair, now: datetime) -> Optional[VerificationCode]:
        for code in reversed(self._codes[pair]):
            if code.is_live_at(now):
                return code
        return None

    async def find_live(self, session_id: str, student_id: str, now: datetime) -> Optional[VerificationCode]:
        pair = (session_id, student_id)
        with self._locks.hold(pair):
            return self._live(pair, now)

    async def insert_live(self, code: VerificationCode, now: datetime) -> VerificationCode:
        pair = (code.session_id, code.student_id)
        with self._locks.hold(pair):
            existing = self._live(pair, now)
            if existing is not None:
                return existing
            self._codes[pair].append(code)
            return code

    async def claim(self, session_id: str, student_id: str, code: str, now: datetime) -> bool:
        pair = (session_id, student_id)
        with self._locks.hold(pair):
            live = self._live(pair, now)
            if live is None or live.code != code:
                return False
            live.consumed = True
            live.consumed_at = now
            return True

    async def find_by_value(self, session_id: str, student_id: str, code: str) -> Optional[VerificationCode]:
        pair = (session_id, student_id)
        with self._locks.hold(pair):
            for stored in reversed(self._codes[pair]):
                if stored.code == code:
                    return stored
        return None

    async def release(self, session_id: str, student_id: str, code: str, claimed_at: datetime) -> bool:
        pair = (session_id, student_id)
        with self._locks.hold(pair):
            codes = self._codes[pair]
            position = next(
                (i for i in range(len(codes) - 1, -1, -1)
                 if codes[i].code == code and codes[i].consumed and codes[i].consumed_at == claimed_at),
                None,
            )
            if position is None:
                return False
            if any(not newer.consumed for newer in codes[position + 1:]):
                # a newer code was issued in the meantime, keep this one dead
                return False
            stored = codes[position]
            stored.consumed = False
            stored.consumed_at = None
            return True


class MemoryAttendanceRepository(AttendanceRepository):
    def __init__(self):
        self._records: Dict[Pair, AttendanceRecord] = {}
        self._locks = KeyedLock()

    async def exists(self, session_id: str, student_id: str) -> bool:
        return (session_id, student_id) in self._records

    async def insert_if_absent(self, record: AttendanceRecord) -> bool:
        pair = (record.session_id, record.student_id)
        with self._locks.hold(pair):
            if pair in self._records:
                return False
            self._records[pair] = record
            return True

    async def for_session(self, session_id: str) -> List[AttendanceRecord]:
        records = [r for (sid, _), r in list(self._records.items()) if sid == session_id]
        return sorted(records, key=lambda r: r.timestamp, reverse=True)

    async def for_student(self, student_id: str, limit: int = 20) -> List[AttendanceRecord]:
        records = [r for (_, st), r in list(self._records.items()) if st == student_id]
        return sorted(records, key=lambda r: r.timestamp, reverse=True)[:limit]


_IDENTITY_FIELD = {
    IdentityKind.device: "device_fingerprint",
    IdentityKind.network: "network_identity",
    IdentityKind.student: "student_id",
}


class MemoryAssociationRepository(AssociationRepository):
    def __init__(self):
        self._items: List[Association] = []

    async def append(self, association: Association) -> None:
        # list.append is atomic, concurrent writers never lose an entry
        self._items.append(association)

    async def history(self, kind: IdentityKind, value: str, since: datetime, limit: Optional[int] = None) -> List[Association]:
        field = _IDENTITY_FIELD[kind]
        matches = [a for a in list(self._items) if getattr(a, field) == value and a.timestamp > since]
        matches.sort(key=lambda a: a.timestamp, reverse=True)
        return matches[:limit] if limit is not None else matches

    async def since(self, since: datetime) -> List[Association]:
        return sorted((a for a in list(self._items) if a.timestamp >= since), key=lambda a: a.timestamp)


class MemoryBlockListRepository(BlockListRepository):
    def __init__(self):
        self._entries: Dict[Tuple[IdentityKind, str], BlockedIdentity] = {}

    async def add(self, entry: BlockedIdentity) -> None:
        self._entries.setdefault((entry.kind, entry.identity), entry)

    async def remove(self, kind: IdentityKind, identity: str) -> None:
        self._entries.pop((kind, identity), None)

    async def contains(self, kind: IdentityKind, identity: str) -> bool:
        return (kind, identity) in self._entries

    async def all(self) -> List[BlockedIdentity]:
        return sorted(self._entries.values(), key=lambda e: e.blocked_at, reverse=True)


class MemoryIncidentRepository(IncidentRepository):
    def __init__(self):
        self._incidents: List[SecurityIncident] = []

    async def append(self, incident: SecurityIncident) -> None:
        self._incidents.append(incident)

    async def get(self, incident_id: str) -> Optional[SecurityIncident]:
        return next((i for i in self._incidents if i.id == incident_id), None)

    async def mark_resolved(self, incident_id: str, resolution: str, resolved_at: datetime) -> Optional[SecurityIncident]:
        incident = await self.get(incident_id)
        if incident is None:
            return None
        incident.resolved = True
        incident.resolution = resolution
        incident.resolved_at = resolved_at
        return incident

    async def query(
        self,
        severity: Optional[Severity] = None,
        type: Optional[IncidentType] = None,
        resolved: Optional[bool] = None,
        session_id: Optional[str] = None,
        limit: int = 20,
    ) -> List[SecurityIncident]:
        found = [
            i for i in reversed(self._incidents)
            if (severity is None or i.severity == severity)
            and (type is None or i.type == type)
            and (resolved is None or i.resolved == resolved)
            and (session_id is None or i.session_id == session_id)
        ]
        return found[:limit]

    async def created_since(self, since: datetime, types: Sequence[IncidentType]) -> List[SecurityIncident]:
        return [i for i in self._incidents if i.created_at >= since and i.type in types]
