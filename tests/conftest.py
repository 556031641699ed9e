from datetime import datetime, timedelta, timezone

import pytest

from app.config import SecuritySettings
from app.dependencies import build_guard
from app.repositories.memory import MemorySessionDirectory, MemoryStudentDirectory
from app.schemas.attendance import AttendanceSubmission
from app.schemas.session import ClassSessionInfo, GeoPoint, SessionState
from app.utils.clock import Clock
from app.utils.geoip import GeoIpLookup
from app.utils.socketio_manager import Notifier

START = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)
CLASSROOM = GeoPoint(latitude=12.9716, longitude=77.5946)


class FrozenClock(Clock):
    def __init__(self, now: datetime = START):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []

    async def publish(self, topic, event):
        self.events.append((topic, event))


class StaticGeoIp(GeoIpLookup):
    def __init__(self, answers=None):
        self.answers = answers or {}

    async def lookup(self, network_identity):
        return self.answers.get(network_identity)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def settings():
    return SecuritySettings()


@pytest.fixture
def sessions():
    return MemorySessionDirectory([
        ClassSessionInfo(id="s1", state=SessionState.active, expected_location=CLASSROOM),
        ClassSessionInfo(id="s2", state=SessionState.active),
        ClassSessionInfo(id="done", state=SessionState.completed),
        ClassSessionInfo(id="cancelled", state=SessionState.cancelled),
    ])


@pytest.fixture
def students():
    return MemoryStudentDirectory({f"R{n:03d}": f"student-{n}" for n in range(1, 11)})


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def geoip():
    return StaticGeoIp()


@pytest.fixture
def guard(clock, settings, sessions, students, notifier, geoip):
    return build_guard(
        backend="memory",
        settings=settings,
        clock=clock,
        notifier=notifier,
        geoip=geoip,
        sessions=sessions,
        students=students,
    )


@pytest.fixture
def submit(guard):
    """Request a code for the student and submit it with the given identities."""

    async def _submit(roll="R001", session_id="s1", device="dev-a", network="10.0.0.1", browser="br-a", geo=None, code=None):
        if code is None:
            issued = await guard.admission.request_code(session_id, roll)
            code = issued.code
        return await guard.admission.submit(AttendanceSubmission(
            roll_number=roll,
            code=code,
            session_id=session_id,
            device_fingerprint=device,
            network_identity=network,
            browser_fingerprint=browser,
            geo_location=geo,
        ))

    return _submit
