from datetime import timedelta

import pytest

from app.config import SecuritySettings
from app.schemas.security import Association, GeoIpInfo
from app.schemas.session import ClassSessionInfo, GeoPoint, SessionState
from app.services.analyzers import Attempt, SignalHistory, default_analyzers

from conftest import CLASSROOM, START

NOW = START + timedelta(minutes=30)


@pytest.fixture
def analyzers():
    return {a.name: a for a in default_analyzers(SecuritySettings())}


def attempt(student="student-1", device="dev-a", network="10.0.0.1", browser="br-a", geo=None):
    return Attempt(
        student_id=student,
        session_id="s1",
        device_fingerprint=device,
        network_identity=network,
        browser_fingerprint=browser,
        geo_location=geo,
        submitted_at=NOW,
    )


def assoc(minutes_ago, student="student-1", device="dev-a", network="10.0.0.1", browser="br-a", score=100, accepted=True):
    return Association(
        device_fingerprint=device,
        network_identity=network,
        browser_fingerprint=browser,
        student_id=student,
        session_id="s0",
        timestamp=NOW - timedelta(minutes=minutes_ago),
        score=score,
        accepted=accepted,
    )


def test_clean_history_triggers_nothing(analyzers):
    history = SignalHistory(now=NOW)
    for analyzer in analyzers.values():
        assert analyzer(attempt(), history) == (0, [])


def test_blocked_device_short_circuits(analyzers):
    history = SignalHistory(
        now=NOW,
        device_blocked=True,
        device_history=[assoc(10 + i, student="student-9", score=0) for i in range(6)],
    )
    assert analyzers["device"](attempt(), history) == (100, ["device-blocked"])


def test_device_shared_with_another_student(analyzers):
    history = SignalHistory(now=NOW, device_history=[assoc(20, student="student-2")])
    assert analyzers["device"](attempt(), history) == (50, ["device-shared"])


def test_device_reuse_by_same_student_is_fine(analyzers):
    history = SignalHistory(now=NOW, device_history=[assoc(20), assoc(200, student="student-2")])
    assert analyzers["device"](attempt(), history) == (0, [])


def test_device_high_risk_average(analyzers):
    history = SignalHistory(now=NOW, device_history=[assoc(120, score=20), assoc(240, score=25)])
    assert analyzers["device"](attempt(), history) == (30, ["device-high-risk"])


def test_device_rapid_use_counts_current_attempt(analyzers):
    five = SignalHistory(now=NOW, device_history=[assoc(5 + 7 * i) for i in range(5)])
    four = SignalHistory(now=NOW, device_history=[assoc(5 + 7 * i) for i in range(4)])
    assert analyzers["device"](attempt(), five) == (25, ["device-rapid-use"])
    assert analyzers["device"](attempt(), four) == (0, [])


def test_device_rapid_use_ignores_older_than_an_hour(analyzers):
    history = SignalHistory(now=NOW, device_history=[assoc(61 + 3 * i) for i in range(6)])
    assert "device-rapid-use" not in analyzers["device"](attempt(), history).flags


def test_blocked_network_short_circuits(analyzers):
    history = SignalHistory(now=NOW, network_blocked=True, geo=GeoIpInfo(country_code="RU", proxy=True))
    assert analyzers["network"](attempt(), history) == (100, ["network-blocked"])


def test_network_geoip_signals(analyzers):
    history = SignalHistory(now=NOW, geo=GeoIpInfo(country_code="ir", proxy=True))
    assert analyzers["network"](attempt(), history) == (60, ["network-suspicious-location", "network-proxy"])


def test_network_multi_device(analyzers):
    history = SignalHistory(now=NOW, network_history=[assoc(10 + i, device=f"dev-{i}") for i in range(3)])
    assert analyzers["network"](attempt(device="dev-new"), history) == (35, ["network-multi-device"])
    assert analyzers["network"](attempt(device="dev-0"), history) == (0, [])


def test_timing_too_fast_from_device_or_network(analyzers):
    recent = NOW - timedelta(seconds=3)
    by_device = assoc(0).model_copy(update={"timestamp": recent})
    by_network = assoc(0, device="dev-z").model_copy(update={"timestamp": recent})
    assert analyzers["timing"](attempt(), SignalHistory(now=NOW, device_history=[by_device])).flags == ["timing-too-fast"]
    assert analyzers["timing"](attempt(), SignalHistory(now=NOW, network_history=[by_network])).flags == ["timing-too-fast"]


def test_timing_automated_pattern(analyzers):
    regular = SignalHistory(now=NOW, device_history=[assoc(10 * i + 1) for i in range(5)])
    irregular = SignalHistory(now=NOW, device_history=[assoc(m) for m in (1, 8, 20, 29, 45)])
    too_short = SignalHistory(now=NOW, device_history=[assoc(1), assoc(11)])

    assert analyzers["timing"](attempt(), regular) == (30, ["timing-automated-pattern"])
    assert analyzers["timing"](attempt(), irregular) == (0, [])
    assert analyzers["timing"](attempt(), too_short) == (0, [])


def test_behavioral_new_device_and_browser(analyzers):
    history = SignalHistory(now=NOW, student_history=[assoc(60 * 24)])
    signal = analyzers["behavioral"](attempt(device="dev-b", browser="br-b"), history)
    assert signal == (25, ["new-device", "new-browser"])


def test_behavioral_ignores_rejected_attempts(analyzers):
    history = SignalHistory(now=NOW, student_history=[assoc(60, device="dev-x", score=10, accepted=False)])
    assert analyzers["behavioral"](attempt(), history) == (0, [])


def test_behavioral_historically_risky(analyzers):
    history = SignalHistory(now=NOW, student_history=[assoc(60 * 24, score=61), assoc(60 * 48, score=65)])
    assert analyzers["behavioral"](attempt(), history) == (20, ["historically-risky"])


def test_geolocation_out_of_range(analyzers):
    session = ClassSessionInfo(id="s1", state=SessionState.active, expected_location=CLASSROOM)
    history = SignalHistory(now=NOW, session=session)
    near = GeoPoint(latitude=CLASSROOM.latitude + 0.001, longitude=CLASSROOM.longitude)
    far = GeoPoint(latitude=CLASSROOM.latitude + 0.05, longitude=CLASSROOM.longitude)

    assert analyzers["geolocation"](attempt(geo=near), history) == (0, [])
    assert analyzers["geolocation"](attempt(geo=far), history) == (25, ["location-out-of-range"])


def test_geolocation_skipped_without_both_locations(analyzers):
    far = GeoPoint(latitude=0, longitude=0)
    no_expected = SignalHistory(now=NOW, session=ClassSessionInfo(id="s2", state=SessionState.active))
    assert analyzers["geolocation"](attempt(geo=far), no_expected) == (0, [])
    assert analyzers["geolocation"](attempt(geo=None), SignalHistory(now=NOW)) == (0, [])


def test_anomaly_frequency_within_hour(analyzers):
    six = SignalHistory(now=NOW, student_history=[assoc(1 + 4 * i, accepted=False) for i in range(6)])
    five = SignalHistory(now=NOW, student_history=[assoc(1 + 4 * i, accepted=False) for i in range(5)])
    assert analyzers["anomaly"](attempt(), six) == (30, ["suspicious-frequency-pattern"])
    assert analyzers["anomaly"](attempt(), five) == (0, [])


def test_anomaly_counts_only_the_current_hour(analyzers):
    # NOW is 09:30, attempts 31+ minutes ago fall in the 08:00 bucket
    history = SignalHistory(now=NOW, student_history=[assoc(31 + i) for i in range(10)])
    assert analyzers["anomaly"](attempt(), history) == (0, [])
