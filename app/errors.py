"""
Typed rejections raised by the attendance core.

Every rejection carries a stable ``code`` for clients, a human readable
``message``, the HTTP status the routes answer with, and whether the caller
may retry the very same submission.
"""
from typing import Any, Dict, List, Optional


class AdmissionRejected(Exception):
    code = "rejected"
    status_code = 400
    retryable = False

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def extra(self) -> Dict[str, Any]:
        return {}

    def to_detail(self) -> Dict[str, Any]:
        detail = {"code": self.code, "message": self.message, "retryable": self.retryable}
        detail.update(self.extra())
        return detail


class SessionNotActive(AdmissionRejected):
    """Session not found or inactive"""
    code = "session-not-active"
    status_code = 404


class StudentNotFound(AdmissionRejected):
    """Student not found"""
    code = "student-not-found"
    status_code = 404


class InvalidCode(AdmissionRejected):
    """Invalid verification code"""
    code = "invalid-code"


class ExpiredCode(AdmissionRejected):
    """Verification code expired, request a new one"""
    code = "expired-code"


class CodeAlreadyUsed(AdmissionRejected):
    """Verification code already used"""
    code = "code-already-used"
    status_code = 409


class DuplicateSubmission(AdmissionRejected):
    """Attendance already marked for this session"""
    code = "duplicate-submission"
    status_code = 409


class RiskBlocked(AdmissionRejected):
    code = "risk-blocked"
    status_code = 403

    def __init__(self, score: int, flags: List[str], reason: Optional[str] = None):
        self.score = score
        self.flags = list(flags)
        super().__init__(reason or f"Security score too low: {score}")

    def extra(self) -> Dict[str, Any]:
        return {"score": self.score, "flags": self.flags}


class StorageUnavailable(AdmissionRejected):
    """Storage temporarily unavailable, retry the submission"""
    code = "storage-unavailable"
    status_code = 503
    retryable = True


class IncidentNotFound(Exception):
    pass
