from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import AttendanceGuard, get_guard
from app.errors import AdmissionRejected, IncidentNotFound
from app.routes.attendance import rejection_to_http
from app.schemas.security import BlockRequest, IdentityKind, IncidentType, ResolveRequest, Severity
from app.services.metrics import TIMEFRAMES, security_metrics

router = APIRouter(prefix="/security", tags=["Security"])

BLOCKABLE = {IdentityKind.device.value: IdentityKind.device, IdentityKind.network.value: IdentityKind.network}


@router.get("/alerts")
async def list_alerts(
    limit: int = 20,
    severity: Optional[Severity] = None,
    type: Optional[IncidentType] = None,
    resolved: Optional[bool] = None,
    session_id: Optional[str] = None,
    guard: AttendanceGuard = Depends(get_guard),
):
    return await guard.incidents.alerts(
        severity=severity, type=type, resolved=resolved, session_id=session_id, limit=limit
    )


@router.put("/alerts/{incident_id}/resolve")
async def resolve_alert(incident_id: str, data: Optional[ResolveRequest] = None, guard: AttendanceGuard = Depends(get_guard)):
    try:
        incident = await guard.incidents.resolve(incident_id, data.resolution if data else None)
    except IncidentNotFound:
        raise HTTPException(status_code=404, detail="Alert not found")
    return {
        "success": True,
        "message": "Alert resolved successfully",
        "alert": {"id": incident.id, "type": incident.type, "resolved": incident.resolved},
    }


@router.get("/metrics")
async def get_metrics(timeframe: str = "24h", guard: AttendanceGuard = Depends(get_guard)):
    if timeframe not in TIMEFRAMES:
        raise HTTPException(status_code=400, detail=f"Unknown timeframe, use one of {', '.join(TIMEFRAMES)}")
    return await security_metrics(guard.associations, guard.incident_log, guard.clock, timeframe)


@router.get("/blocked")
async def blocked_identities(guard: AttendanceGuard = Depends(get_guard)):
    return [
        {
            "kind": entry.kind,
            "identity": entry.identity[:10] + "...",
            "reason": entry.reason,
            "blocked_at": entry.blocked_at,
        }
        for entry in await guard.reputation.blocked_identities()
    ]


@router.post("/{kind}/{action}")
async def block_or_unblock(kind: str, action: str, data: BlockRequest, guard: AttendanceGuard = Depends(get_guard)):
    identity_kind = BLOCKABLE.get(kind)
    if identity_kind is None:
        raise HTTPException(status_code=400, detail="Invalid identity kind")
    if action not in ("block", "unblock"):
        raise HTTPException(status_code=400, detail="Invalid action")

    try:
        if action == "block":
            await guard.reputation.block(identity_kind, data.identity, data.reason or f"{kind.capitalize()} blocked by admin")
        else:
            await guard.reputation.unblock(identity_kind, data.identity, data.reason)
    except AdmissionRejected as rejection:
        raise rejection_to_http(rejection)

    return {
        "success": True,
        "message": f"{kind.capitalize()} {action}ed successfully",
        "identity": data.identity[:10] + "...",
        "blocked": action == "block",
    }
