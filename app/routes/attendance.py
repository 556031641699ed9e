from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import AttendanceGuard, get_guard
from app.errors import AdmissionRejected
from app.schemas.attendance import AttendanceSubmission, CodeRequest, IssuedCode

router = APIRouter(prefix="/attendance", tags=["Attendance"])


def rejection_to_http(rejection: AdmissionRejected) -> HTTPException:
    headers = {"Retry-After": "1"} if rejection.retryable else None
    return HTTPException(status_code=rejection.status_code, detail=rejection.to_detail(), headers=headers)


@router.post("/request-code", response_model=IssuedCode)
async def request_code(data: CodeRequest, guard: AttendanceGuard = Depends(get_guard)):
    """
    Hand out the one-time code for a student in a live session.
    Asking again while the code is still valid returns the same code.
    """
    try:
        issued = await guard.admission.request_code(data.session_id, data.roll_number)
    except AdmissionRejected as rejection:
        raise rejection_to_http(rejection)
    return IssuedCode(code=issued.code, expires_at=issued.expires_at)


@router.post("/submit")
async def submit_attendance(data: AttendanceSubmission, guard: AttendanceGuard = Depends(get_guard)):
    try:
        admission = await guard.admission.submit(data)
    except AdmissionRejected as rejection:
        raise rejection_to_http(rejection)

    return {
        "success": True,
        "message": "Attendance marked successfully",
        "attendance_id": admission.record.id,
        "security_score": admission.assessment.score,
        "flags": admission.assessment.flags,
        "timestamp": admission.record.timestamp,
    }


@router.get("/session/{session_id}")
async def session_attendance(session_id: str, guard: AttendanceGuard = Depends(get_guard)):
    records = await guard.admission.session_records(session_id)
    return [
        {
            "id": r.id,
            "roll_number": r.roll_number,
            "timestamp": r.timestamp,
            "security_score": r.risk_score,
            "security_flags": r.flags,
            "device_fingerprint": r.device_fingerprint[:10] + "...",
        }
        for r in records
    ]


@router.get("/history/{roll_number}")
async def attendance_history(roll_number: str, limit: int = 20, guard: AttendanceGuard = Depends(get_guard)):
    try:
        records = await guard.admission.student_records(roll_number, limit)
    except AdmissionRejected as rejection:
        raise rejection_to_http(rejection)
    return [
        {"id": r.id, "session_id": r.session_id, "timestamp": r.timestamp, "security_score": r.risk_score}
        for r in records
    ]
