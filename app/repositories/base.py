"""
Data-access contracts the attendance core depends on.

Two primitives carry the correctness guarantees and must be atomic in every
backend: ``CodeRepository.claim`` (check-and-mark-used of a code) and
``AttendanceRepository.insert_if_absent`` (unique insert keyed by the
``(session_id, student_id)`` pair). Everything else is plain reads and appends.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

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


class SessionDirectory(ABC):
    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[ClassSessionInfo]:
        ...


class StudentDirectory(ABC):
    @abstractmethod
    async def resolve_student(self, roll_number: str) -> Optional[str]:
        """Return the student id for a roll number, or None."""


class CodeRepository(ABC):
    @abstractmethod
    async def find_live(self, session_id: str, student_id: str, now: datetime) -> Optional[VerificationCode]:
        ...

    @abstractmethod
    async def insert_live(self, code: VerificationCode, now: datetime) -> VerificationCode:
        """Store ``code`` as the live code of its pair.

        If another live code won the race, that one is returned instead.
        """

    @abstractmethod
    async def claim(self, session_id: str, student_id: str, code: str, now: datetime) -> bool:
        """Atomically flip a matching live code to consumed. True only for the single winner."""

    @abstractmethod
    async def find_by_value(self, session_id: str, student_id: str, code: str) -> Optional[VerificationCode]:
        """Most recently issued code of the pair carrying this value."""

    @abstractmethod
    async def release(self, session_id: str, student_id: str, code: str, claimed_at: datetime) -> bool:
        """Undo the claim made at ``claimed_at`` whose admission could not be committed."""


class AttendanceRepository(ABC):
    @abstractmethod
    async def exists(self, session_id: str, student_id: str) -> bool:
        ...

    @abstractmethod
    async def insert_if_absent(self, record: AttendanceRecord) -> bool:
        """Insert the record unless the pair already has one. False means it already existed."""

    @abstractmethod
    async def for_session(self, session_id: str) -> List[AttendanceRecord]:
        ...

    @abstractmethod
    async def for_student(self, student_id: str, limit: int = 20) -> List[AttendanceRecord]:
        ...


class AssociationRepository(ABC):
    @abstractmethod
    async def append(self, association: Association) -> None:
        ...

    @abstractmethod
    async def history(
        self,
        kind: IdentityKind,
        value: str,
        since: datetime,
        limit: Optional[int] = None,
    ) -> List[Association]:
        """Associations of one identity newer than ``since``, newest first."""

    @abstractmethod
    async def since(self, since: datetime) -> List[Association]:
        ...


class BlockListRepository(ABC):
    @abstractmethod
    async def add(self, entry: BlockedIdentity) -> None:
        ...

    @abstractmethod
    async def remove(self, kind: IdentityKind, identity: str) -> None:
        ...

    @abstractmethod
    async def contains(self, kind: IdentityKind, identity: str) -> bool:
        ...

    @abstractmethod
    async def all(self) -> List[BlockedIdentity]:
        ...


class IncidentRepository(ABC):
    @abstractmethod
    async def append(self, incident: SecurityIncident) -> None:
        ...

    @abstractmethod
    async def get(self, incident_id: str) -> Optional[SecurityIncident]:
        ...

    @abstractmethod
    async def mark_resolved(self, incident_id: str, resolution: str, resolved_at: datetime) -> Optional[SecurityIncident]:
        ...

    @abstractmethod
    async def query(
        self,
        severity: Optional[Severity] = None,
        type: Optional[IncidentType] = None,
        resolved: Optional[bool] = None,
        session_id: Optional[str] = None,
        limit: int = 20,
    ) -> List[SecurityIncident]:
        ...

    @abstractmethod
    async def created_since(self, since: datetime, types: Sequence[IncidentType]) -> List[SecurityIncident]:
        ...
