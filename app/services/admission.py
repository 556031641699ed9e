"""
Admission of attendance submissions.

A submission walks Received -> SessionChecked -> CodeValidated ->
DuplicateChecked -> Scored and ends in Admitted or Rejected. Every step fails
fast by raising one of the ``app.errors`` rejections. No lock is held across
the awaits: correctness rests on the two atomic primitives of the storage
layer, the code claim and the unique-pair attendance insert.

The code claim and the attendance commit form one logical transaction. If the
commit cannot happen because storage is unavailable (or anything unexpected
breaks after the claim), the claim is released so a retry can reuse the code.
Terminal rejections (duplicate, risk-blocked) keep the code consumed.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from app.config import SecuritySettings
from app.errors import (
    AdmissionRejected,
    CodeAlreadyUsed,
    DuplicateSubmission,
    ExpiredCode,
    InvalidCode,
    RiskBlocked,
    SessionNotActive,
    StorageUnavailable,
    StudentNotFound,
)
from app.repositories.base import AttendanceRepository, SessionDirectory, StudentDirectory
from app.schemas.attendance import AttendanceRecord, AttendanceSubmission, VerificationCode
from app.schemas.security import (
    Association,
    IdentityKind,
    IncidentType,
    RiskAssessment,
    Severity,
)
from app.schemas.session import ClassSessionInfo
from app.services.analyzers import Attempt
from app.services.code_ledger import CodeLedger, ConsumeResult
from app.services.incidents import IncidentRecorder
from app.services.reputation import ReputationStore
from app.services.scoring import RiskScoringEngine
from app.utils.clock import Clock
from app.utils.socketio_manager import Notifier, session_topic

logger = logging.getLogger(__name__)


class AdmissionState(str, Enum):
    received = "received"
    session_checked = "session_checked"
    code_validated = "code_validated"
    duplicate_checked = "duplicate_checked"
    scored = "scored"
    admitted = "admitted"
    rejected = "rejected"


_CODE_ERRORS = {
    ConsumeResult.invalid: InvalidCode,
    ConsumeResult.expired: ExpiredCode,
    ConsumeResult.already_used: CodeAlreadyUsed,
}


@dataclass
class Admission:
    record: AttendanceRecord
    assessment: RiskAssessment


class _Trace:
    def __init__(self, submission: AttendanceSubmission):
        self.submission = submission
        self.state = AdmissionState.received
        self.claimed = False
        self.claimed_at = None
        self.committed = False

    def advance(self, state: AdmissionState):
        logger.debug(f"Submission session={self.submission.session_id} roll={self.submission.roll_number}: {self.state.value} -> {state.value}")
        self.state = state


class AdmissionController:
    def __init__(
        self,
        sessions: SessionDirectory,
        students: StudentDirectory,
        ledger: CodeLedger,
        attendance: AttendanceRepository,
        scoring: RiskScoringEngine,
        reputation: ReputationStore,
        incidents: IncidentRecorder,
        clock: Clock,
        settings: SecuritySettings,
        notifier: Optional[Notifier] = None,
    ):
        self.sessions = sessions
        self.students = students
        self.ledger = ledger
        self.attendance = attendance
        self.scoring = scoring
        self.reputation = reputation
        self.incidents = incidents
        self.clock = clock
        self.settings = settings
        self.notifier = notifier or Notifier()

    async def _require_session(self, session_id: str) -> ClassSessionInfo:
        session = await self.sessions.get_session(session_id)
        if session is None or not session.is_live:
            raise SessionNotActive()
        return session

    async def _require_student(self, roll_number: str) -> str:
        student_id = await self.students.resolve_student(roll_number)
        if student_id is None:
            raise StudentNotFound()
        return student_id

    async def request_code(self, session_id: str, roll_number: str) -> VerificationCode:
        await self._require_session(session_id)
        student_id = await self._require_student(roll_number)
        return await self.ledger.issue(session_id, student_id)

    async def submit(self, submission: AttendanceSubmission) -> Admission:
        trace = _Trace(submission)
        student_id = None
        try:
            session = await self._require_session(submission.session_id)
            trace.advance(AdmissionState.session_checked)
            student_id = await self._require_student(submission.roll_number)

            trace.claimed_at = self.clock.now()
            await self._validate_code(submission, student_id, trace.claimed_at)
            trace.claimed = True
            trace.advance(AdmissionState.code_validated)

            return await self._admit(trace, submission, session, student_id)
        except AdmissionRejected as rejection:
            if trace.claimed and not trace.committed and rejection.retryable:
                await self._release_claim(submission, student_id, trace.claimed_at)
            trace.advance(AdmissionState.rejected)
            logger.info(f"🚫 Rejected session={submission.session_id} roll={submission.roll_number}: {rejection.code}")
            raise
        except Exception:
            if trace.claimed and not trace.committed:
                await self._release_claim(submission, student_id, trace.claimed_at)
            raise

    async def _validate_code(self, submission: AttendanceSubmission, student_id: str, now) -> None:
        result = await self.ledger.consume(submission.session_id, student_id, submission.code, now)
        if result == ConsumeResult.ok:
            return
        await self.incidents.record(
            IncidentType.failed_attempt,
            Severity.medium,
            result.value,
            **self._context(submission, student_id),
        )
        await self._remember(self._unscored(submission, student_id, now))
        raise _CODE_ERRORS[result]()

    async def _admit(
        self,
        trace: _Trace,
        submission: AttendanceSubmission,
        session: ClassSessionInfo,
        student_id: str,
    ) -> Admission:
        # fast path only, the unique insert below is what actually guarantees it
        if await self.attendance.exists(submission.session_id, student_id):
            await self._reject_duplicate(submission, student_id, self._unscored(submission, student_id, self.clock.now()))
        trace.advance(AdmissionState.duplicate_checked)

        now = self.clock.now()
        attempt = Attempt(
            student_id=student_id,
            session_id=submission.session_id,
            device_fingerprint=submission.device_fingerprint,
            network_identity=submission.network_identity,
            browser_fingerprint=submission.browser_fingerprint,
            geo_location=submission.geo_location,
            submitted_at=now,
        )
        assessment = await self.scoring.score(attempt, session)
        trace.advance(AdmissionState.scored)

        association = self._unscored(submission, student_id, now).model_copy(
            update={"score": assessment.score, "accepted": not assessment.blocked}
        )

        if assessment.blocked:
            await self._reject_risk(submission, student_id, assessment, association)

        record = AttendanceRecord(
            session_id=submission.session_id,
            student_id=student_id,
            roll_number=submission.roll_number,
            timestamp=now,
            risk_score=assessment.score,
            flags=assessment.flags,
            device_fingerprint=submission.device_fingerprint,
            network_identity=submission.network_identity,
            browser_fingerprint=submission.browser_fingerprint,
            geo_location=submission.geo_location,
        )
        if not await self.attendance.insert_if_absent(record):
            await self._reject_duplicate(submission, student_id, association.model_copy(update={"accepted": False}))
        trace.committed = True

        await self._remember(association)

        trace.advance(AdmissionState.admitted)
        logger.info(f"✅ Admitted roll={submission.roll_number} session={submission.session_id} score={assessment.score}")
        await self._publish(record)
        return Admission(record=record, assessment=assessment)

    async def _reject_duplicate(self, submission: AttendanceSubmission, student_id: str, association: Association):
        await self.incidents.record(
            IncidentType.duplicate_submission,
            Severity.medium,
            "Attendance already marked for this session",
            **self._context(submission, student_id),
        )
        await self._remember(association)
        raise DuplicateSubmission()

    async def _reject_risk(
        self,
        submission: AttendanceSubmission,
        student_id: str,
        assessment: RiskAssessment,
        association: Association,
    ):
        await self.incidents.record(
            IncidentType.security_violation,
            Severity.high,
            assessment.reason,
            evidence={"category": "risk-block", "score": assessment.score, "flags": assessment.flags, "penalties": assessment.penalties},
            **self._context(submission, student_id),
        )

        if assessment.score < self.settings.critical_score:
            context = {"session_id": submission.session_id, "student_id": student_id, "roll_number": submission.roll_number}
            for kind, identity in (
                (IdentityKind.device, submission.device_fingerprint),
                (IdentityKind.network, submission.network_identity),
            ):
                if not await self.reputation.is_blocked(kind, identity):
                    await self.reputation.block(kind, identity, "Critical security score", **context)

        # written last so a storage failure above cannot leave a history entry behind for the retry
        await self._remember(association)
        raise RiskBlocked(assessment.score, assessment.flags, assessment.reason)

    @staticmethod
    def _unscored(submission: AttendanceSubmission, student_id: str, now) -> Association:
        return Association(
            device_fingerprint=submission.device_fingerprint,
            network_identity=submission.network_identity,
            browser_fingerprint=submission.browser_fingerprint,
            student_id=student_id,
            session_id=submission.session_id,
            timestamp=now,
        )

    async def _remember(self, association: Association):
        """History is best-effort: losing an entry must not change the outcome of the attempt."""
        try:
            await self.reputation.record_association(association)
        except StorageUnavailable:
            logger.error(
                f"❌ Could not record association for session={association.session_id} "
                f"student={association.student_id}"
            )

    async def _release_claim(self, submission: AttendanceSubmission, student_id: str, claimed_at):
        try:
            await self.ledger.release(submission.session_id, student_id, submission.code, claimed_at)
        except StorageUnavailable:
            logger.exception(f"❌ Could not release code claim for session={submission.session_id} roll={submission.roll_number}")

    async def _publish(self, record: AttendanceRecord):
        event = {
            "type": "new-attendance",
            "attendance": {
                "id": record.id,
                "session_id": record.session_id,
                "roll_number": record.roll_number,
                "timestamp": record.timestamp.isoformat(),
                "risk_score": record.risk_score,
                "flags": record.flags,
                "device_fingerprint": record.device_fingerprint[:10] + "...",
            },
        }
        try:
            await self.notifier.publish(session_topic(record.session_id), event)
        except Exception as e:
            logger.warning(f"⚠️ Notification for {record.id} failed: {e}")

    @staticmethod
    def _context(submission: AttendanceSubmission, student_id: str) -> dict:
        return {
            "session_id": submission.session_id,
            "student_id": student_id,
            "roll_number": submission.roll_number,
            "device_fingerprint": submission.device_fingerprint,
            "network_identity": submission.network_identity,
        }

    async def session_records(self, session_id: str) -> List[AttendanceRecord]:
        return await self.attendance.for_session(session_id)

    async def student_records(self, roll_number: str, limit: int = 20) -> List[AttendanceRecord]:
        student_id = await self._require_student(roll_number)
        return await self.attendance.for_student(student_id, limit)
