import os
from dataclasses import dataclass, field
from typing import Tuple

from dotenv import load_dotenv

load_dotenv()

MONGODB_URL = os.getenv("MONGO_URI", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "attendance_guard")
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "mongo")
GEOIP_URL = os.getenv("GEOIP_URL", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        return default


def _env_list(name: str, default: str) -> Tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip().upper() for item in raw.split(",") if item.strip())


GEOIP_TIMEOUT = _env_float("GEOIP_TIMEOUT", 3.0)


@dataclass(frozen=True)
class SecuritySettings:
    """Thresholds used by the code ledger, the analyzers and the scoring engine."""

    code_ttl_seconds: int = 90
    score_threshold: int = 60
    critical_score: int = 30

    # device
    max_students_per_device: int = 1
    device_history_limit: int = 10
    device_high_risk_average: float = 70
    device_rapid_use_limit: int = 5

    # network
    max_devices_per_network: int = 3
    watched_countries: Tuple[str, ...] = field(default=("CN", "RU", "IR", "KP"))

    # timing
    min_submission_interval_seconds: int = 5
    timing_sample_size: int = 5
    automated_variance_ms2: float = 1000

    # behavioral
    behavioral_days: int = 30
    historically_risky_average: float = 70

    # geolocation / anomaly
    geolocation_radius_m: float = 1000
    suspicious_pattern_threshold: int = 5

    rate_window_seconds: int = 3600

    @classmethod
    def from_env(cls) -> "SecuritySettings":
        return cls(
            code_ttl_seconds=_env_int("CODE_TTL_SECONDS", 90),
            score_threshold=_env_int("SCORE_THRESHOLD", 60),
            critical_score=_env_int("CRITICAL_SCORE", 30),
            watched_countries=_env_list("WATCHED_COUNTRIES", "CN,RU,IR,KP"),
            geolocation_radius_m=_env_float("GEOLOCATION_RADIUS_M", 1000),
            suspicious_pattern_threshold=_env_int("SUSPICIOUS_PATTERN_THRESHOLD", 5),
        )
