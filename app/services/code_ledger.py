"""
One-time verification codes per (session, student).

Issuing is idempotent while a code is live; consuming is a single atomic
claim in the repository, so among any number of concurrent callers holding
the same valid code exactly one gets ``ConsumeResult.ok``.
"""
import logging
import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from app.config import SecuritySettings
from app.errors import SessionNotActive
from app.repositories.base import CodeRepository, SessionDirectory
from app.schemas.attendance import VerificationCode
from app.utils.clock import Clock, as_utc

logger = logging.getLogger(__name__)

CODE_MIN = 100000
CODE_MAX = 999999


class ConsumeResult(str, Enum):
    ok = "ok"
    invalid = "invalid-code"
    expired = "expired-code"
    already_used = "code-already-used"


def generate_code() -> str:
    return str(secrets.randbelow(CODE_MAX - CODE_MIN + 1) + CODE_MIN)


class CodeLedger:
    def __init__(self, codes: CodeRepository, sessions: SessionDirectory, clock: Clock, settings: SecuritySettings):
        self.codes = codes
        self.sessions = sessions
        self.clock = clock
        self.ttl = timedelta(seconds=settings.code_ttl_seconds)

    async def issue(self, session_id: str, student_id: str) -> VerificationCode:
        session = await self.sessions.get_session(session_id)
        if session is None or not session.is_live:
            raise SessionNotActive()

        now = self.clock.now()
        existing = await self.codes.find_live(session_id, student_id, now)
        if existing is not None:
            return existing

        fresh = VerificationCode(
            session_id=session_id,
            student_id=student_id,
            code=generate_code(),
            issued_at=now,
            expires_at=now + self.ttl,
        )
        issued = await self.codes.insert_live(fresh, now)
        if issued is fresh:
            logger.info(f"🔑 Issued code for session={session_id} student={student_id}, expires {fresh.expires_at.isoformat()}")
        return issued

    async def consume(self, session_id: str, student_id: str, supplied: str, now: Optional[datetime] = None) -> ConsumeResult:
        """``now`` doubles as the claim time that ``release`` needs to undo this claim."""
        now = now or self.clock.now()
        if await self.codes.claim(session_id, student_id, supplied, now):
            return ConsumeResult.ok

        stored = await self.codes.find_by_value(session_id, student_id, supplied)
        if stored is None:
            return ConsumeResult.invalid
        if stored.consumed:
            return ConsumeResult.already_used
        if now >= as_utc(stored.expires_at):
            return ConsumeResult.expired
        # live and unexpired, yet the claim failed: another caller won it
        return ConsumeResult.already_used

    async def release(self, session_id: str, student_id: str, supplied: str, claimed_at: datetime) -> bool:
        released = await self.codes.release(session_id, student_id, supplied, claimed_at)
        if released:
            logger.info(f"↩️ Released code claim for session={session_id} student={student_id}")
        return released
