from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from app.config import SecuritySettings
from app.repositories import memory, mongo
from app.repositories.base import AssociationRepository, IncidentRepository
from app.services.admission import AdmissionController
from app.services.code_ledger import CodeLedger
from app.services.incidents import IncidentRecorder
from app.services.reputation import ReputationStore
from app.services.scoring import RiskScoringEngine
from app.utils.clock import Clock, SystemClock
from app.utils.geoip import GeoIpLookup
from app.utils.socketio_manager import Notifier


@dataclass
class AttendanceGuard:
    """Everything the routes need, wired once at startup."""
    admission: AdmissionController
    ledger: CodeLedger
    reputation: ReputationStore
    incidents: IncidentRecorder
    scoring: RiskScoringEngine
    associations: AssociationRepository
    incident_log: IncidentRepository
    clock: Clock


def build_guard(
    backend: str = "mongo",
    settings: Optional[SecuritySettings] = None,
    clock: Optional[Clock] = None,
    notifier: Optional[Notifier] = None,
    geoip: Optional[GeoIpLookup] = None,
    sessions=None,
    students=None,
) -> AttendanceGuard:
    settings = settings or SecuritySettings.from_env()
    clock = clock or SystemClock()

    if backend == "memory":
        sessions = sessions or memory.MemorySessionDirectory()
        students = students or memory.MemoryStudentDirectory()
        codes = memory.MemoryCodeRepository()
        attendance = memory.MemoryAttendanceRepository()
        associations = memory.MemoryAssociationRepository()
        blocklist = memory.MemoryBlockListRepository()
        incident_log = memory.MemoryIncidentRepository()
    elif backend == "mongo":
        sessions = sessions or mongo.MongoSessionDirectory()
        students = students or mongo.MongoStudentDirectory()
        codes = mongo.MongoCodeRepository()
        attendance = mongo.MongoAttendanceRepository()
        associations = mongo.MongoAssociationRepository()
        blocklist = mongo.MongoBlockListRepository()
        incident_log = mongo.MongoIncidentRepository()
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    incidents = IncidentRecorder(incident_log, clock)
    reputation = ReputationStore(associations, blocklist, incidents, clock)
    ledger = CodeLedger(codes, sessions, clock, settings)
    scoring = RiskScoringEngine(reputation, settings, clock, geoip=geoip)
    admission = AdmissionController(
        sessions=sessions,
        students=students,
        ledger=ledger,
        attendance=attendance,
        scoring=scoring,
        reputation=reputation,
        incidents=incidents,
        clock=clock,
        settings=settings,
        notifier=notifier,
    )
    return AttendanceGuard(
        admission=admission,
        ledger=ledger,
        reputation=reputation,
        incidents=incidents,
        scoring=scoring,
        associations=associations,
        incident_log=incident_log,
        clock=clock,
    )


def get_guard(request: Request) -> AttendanceGuard:
    return request.app.state.guard
