import threading
import time

from app.repositories.memory import MemoryAttendanceRepository, MemoryCodeRepository
from app.schemas.attendance import AttendanceRecord
from app.utils.keyed_lock import KeyedLock

from conftest import START


def test_idle_keys_are_forgotten():
    locks = KeyedLock()
    for n in range(100):
        with locks.hold(("s1", f"student-{n}")):
            assert len(locks) == 1
    assert len(locks) == 0


def test_same_key_is_exclusive():
    locks = KeyedLock()
    inside = []
    overlaps = []

    def work():
        with locks.hold("pair"):
            inside.append(1)
            if len(inside) > 1:
                overlaps.append(1)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=work) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []
    assert len(locks) == 0


def test_lock_released_on_error():
    locks = KeyedLock()
    try:
        with locks.hold("pair"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert len(locks) == 0
    with locks.hold("pair"):
        pass


async def test_repositories_do_not_keep_locks_for_finished_pairs(guard):
    attendance = MemoryAttendanceRepository()
    for n in range(50):
        await attendance.insert_if_absent(AttendanceRecord(
            session_id="s1",
            student_id=f"student-{n}",
            roll_number=f"R{n:03d}",
            timestamp=START,
            risk_score=100,
            device_fingerprint="dev-a",
            network_identity="10.0.0.1",
        ))
    assert len(attendance._locks) == 0

    for n in range(1, 6):
        issued = await guard.ledger.issue("s1", f"student-{n}")
        await guard.ledger.consume("s1", f"student-{n}", issued.code)
    assert len(guard.ledger.codes._locks) == 0
    assert isinstance(guard.ledger.codes, MemoryCodeRepository)
