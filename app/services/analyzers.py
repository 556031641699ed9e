"""
Signal analyzers.

Each analyzer is a declarative list of ``Rule(flag, penalty, predicate)``
evaluated independently over an ``Attempt`` and a ``SignalHistory``
snapshot. Predicates are pure: all I/O happens earlier, when the scoring
engine gathers the snapshot. An analyzer may declare a ``guard`` rule that,
when it fires, replaces the rest of its rules, and an ``applies`` predicate
that skips it entirely.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from statistics import mean, pvariance
from typing import Callable, List, NamedTuple, Optional

from app.config import SecuritySettings
from app.schemas.security import Association, GeoIpInfo
from app.schemas.session import ClassSessionInfo, GeoPoint
from app.utils.geoip import haversine_m


@dataclass(frozen=True)
class Attempt:
    student_id: str
    session_id: str
    device_fingerprint: str
    network_identity: str
    browser_fingerprint: Optional[str]
    geo_location: Optional[GeoPoint]
    submitted_at: datetime


@dataclass(frozen=True)
class SignalHistory:
    now: datetime
    device_blocked: bool = False
    network_blocked: bool = False
    # newest first; device and student cover the behavioral window, network the rate window
    device_history: List[Association] = field(default_factory=list)
    network_history: List[Association] = field(default_factory=list)
    student_history: List[Association] = field(default_factory=list)
    geo: Optional[GeoIpInfo] = None
    session: Optional[ClassSessionInfo] = None


Predicate = Callable[[Attempt, SignalHistory], bool]


class Rule(NamedTuple):
    flag: str
    penalty: int
    predicate: Predicate


class Signal(NamedTuple):
    penalty: int
    flags: List[str]


@dataclass(frozen=True)
class Analyzer:
    name: str
    rules: List[Rule]
    guard: Optional[Rule] = None
    applies: Optional[Predicate] = None

    def __call__(self, attempt: Attempt, history: SignalHistory) -> Signal:
        if self.applies is not None and not self.applies(attempt, history):
            return Signal(0, [])
        if self.guard is not None and self.guard.predicate(attempt, history):
            return Signal(self.guard.penalty, [self.guard.flag])

        penalty = 0
        flags = []
        for rule in self.rules:
            if rule.predicate(attempt, history):
                penalty += rule.penalty
                flags.append(rule.flag)
        return Signal(penalty, flags)


def _within(items: List[Association], since: datetime) -> List[Association]:
    return [a for a in items if a.timestamp > since]


# device

def _device_blocked(attempt, history):
    return history.device_blocked


def _device_tracked(history, settings):
    return history.device_history[:settings.device_history_limit]


def device_shared(attempt, history, settings: SecuritySettings):
    prior = {a.student_id for a in _device_tracked(history, settings)}
    if not prior or attempt.student_id in prior:
        return False
    return len(prior) + 1 > settings.max_students_per_device


def device_high_risk(attempt, history, settings: SecuritySettings):
    scored = [a for a in _device_tracked(history, settings) if a.scored]
    return bool(scored) and mean(a.risk for a in scored) > settings.device_high_risk_average


def device_rapid_use(attempt, history, settings: SecuritySettings):
    recent = _within(history.device_history, history.now - timedelta(seconds=settings.rate_window_seconds))
    return len(recent) + 1 > settings.device_rapid_use_limit


# network

def _network_blocked(attempt, history):
    return history.network_blocked


def network_suspicious_location(attempt, history, settings: SecuritySettings):
    geo = history.geo
    return bool(geo and geo.country_code and geo.country_code.upper() in settings.watched_countries)


def network_proxy(attempt, history):
    return bool(history.geo and history.geo.proxy)


def network_multi_device(attempt, history, settings: SecuritySettings):
    recent = _within(history.network_history, history.now - timedelta(seconds=settings.rate_window_seconds))
    devices = {a.device_fingerprint for a in recent} | {attempt.device_fingerprint}
    return len(devices) > settings.max_devices_per_network


# timing

def timing_too_fast(attempt, history, settings: SecuritySettings):
    since = history.now - timedelta(seconds=settings.min_submission_interval_seconds)
    return bool(_within(history.device_history, since) or _within(history.network_history, since))


def timing_automated_pattern(attempt, history, settings: SecuritySettings):
    sample = history.device_history[:settings.timing_sample_size]
    if len(sample) < 3:
        return False
    intervals = [
        (newer.timestamp - older.timestamp).total_seconds() * 1000
        for newer, older in zip(sample, sample[1:])
    ]
    return pvariance(intervals) < settings.automated_variance_ms2


# behavioral

def _accepted(history):
    return [a for a in history.student_history if a.accepted]


def behavior_new_device(attempt, history):
    devices = {a.device_fingerprint for a in _accepted(history)}
    return bool(devices) and attempt.device_fingerprint not in devices


def behavior_new_browser(attempt, history):
    browsers = {a.browser_fingerprint for a in _accepted(history) if a.browser_fingerprint}
    return bool(browsers) and attempt.browser_fingerprint not in browsers


def behavior_historically_risky(attempt, history, settings: SecuritySettings):
    accepted = _accepted(history)
    return bool(accepted) and mean(a.score for a in accepted) < settings.historically_risky_average


# geolocation

def _has_locations(attempt, history):
    return attempt.geo_location is not None and history.session is not None \
        and history.session.expected_location is not None


def location_out_of_range(attempt, history, settings: SecuritySettings):
    here = attempt.geo_location
    expected = history.session.expected_location
    distance = haversine_m(here.latitude, here.longitude, expected.latitude, expected.longitude)
    return distance > settings.geolocation_radius_m


# anomaly

def suspicious_frequency(attempt, history, settings: SecuritySettings):
    hour_start = history.now.replace(minute=0, second=0, microsecond=0)
    this_hour = [a for a in history.student_history if a.timestamp >= hour_start]
    return len(this_hour) > settings.suspicious_pattern_threshold


def default_analyzers(settings: SecuritySettings) -> List[Analyzer]:
    """The analyzer set in declaration order; flag order in reasons follows it."""
    bind = lambda fn: partial(fn, settings=settings)  # noqa: E731

    return [
        Analyzer(
            name="device",
            guard=Rule("device-blocked", 100, _device_blocked),
            rules=[
                Rule("device-shared", 50, bind(device_shared)),
                Rule("device-high-risk", 30, bind(device_high_risk)),
                Rule("device-rapid-use", 25, bind(device_rapid_use)),
            ],
        ),
        Analyzer(
            name="network",
            guard=Rule("network-blocked", 100, _network_blocked),
            rules=[
                Rule("network-suspicious-location", 20, bind(network_suspicious_location)),
                Rule("network-proxy", 40, network_proxy),
                Rule("network-multi-device", 35, bind(network_multi_device)),
            ],
        ),
        Analyzer(
            name="timing",
            rules=[
                Rule("timing-too-fast", 45, bind(timing_too_fast)),
                Rule("timing-automated-pattern", 30, bind(timing_automated_pattern)),
            ],
        ),
        Analyzer(
            name="behavioral",
            rules=[
                Rule("new-device", 15, behavior_new_device),
                Rule("new-browser", 10, behavior_new_browser),
                Rule("historically-risky", 20, bind(behavior_historically_risky)),
            ],
        ),
        Analyzer(
            name="geolocation",
            applies=_has_locations,
            rules=[Rule("location-out-of-range", 25, bind(location_out_of_range))],
        ),
        Analyzer(
            name="anomaly",
            rules=[Rule("suspicious-frequency-pattern", 30, bind(suspicious_frequency))],
        ),
    ]
