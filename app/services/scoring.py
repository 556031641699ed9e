import logging
from datetime import timedelta
from typing import List, Optional

from app.config import SecuritySettings
from app.schemas.security import IdentityKind, RiskAssessment
from app.schemas.session import ClassSessionInfo
from app.services.analyzers import Analyzer, Attempt, SignalHistory, default_analyzers
from app.services.reputation import ReputationStore
from app.utils.clock import Clock
from app.utils.geoip import GeoIpLookup

logger = logging.getLogger(__name__)

MAX_SCORE = 100


class RiskScoringEngine:
    """
    Starts every attempt at 100 and subtracts the penalty of each analyzer.

    Penalties only ever lower the score and commute, so analyzer order only
    shows up in the order of flags inside the reason string.
    """

    def __init__(
        self,
        reputation: ReputationStore,
        settings: SecuritySettings,
        clock: Clock,
        geoip: Optional[GeoIpLookup] = None,
        analyzers: Optional[List[Analyzer]] = None,
    ):
        self.reputation = reputation
        self.settings = settings
        self.clock = clock
        self.geoip = geoip or GeoIpLookup()
        self.analyzers = analyzers if analyzers is not None else default_analyzers(settings)

    async def gather(self, attempt: Attempt, session: Optional[ClassSessionInfo] = None) -> SignalHistory:
        behavioral = timedelta(days=self.settings.behavioral_days)
        rate = timedelta(seconds=self.settings.rate_window_seconds)

        return SignalHistory(
            now=self.clock.now(),
            device_blocked=await self.reputation.is_blocked(IdentityKind.device, attempt.device_fingerprint),
            network_blocked=await self.reputation.is_blocked(IdentityKind.network, attempt.network_identity),
            device_history=await self.reputation.history(IdentityKind.device, attempt.device_fingerprint, behavioral),
            network_history=await self.reputation.history(IdentityKind.network, attempt.network_identity, rate),
            student_history=await self.reputation.history(IdentityKind.student, attempt.student_id, behavioral),
            geo=await self.geoip.lookup(attempt.network_identity),
            session=session,
        )

    def evaluate(self, attempt: Attempt, history: SignalHistory) -> RiskAssessment:
        score = MAX_SCORE
        flags: List[str] = []
        penalties = {}
        for analyzer in self.analyzers:
            signal = analyzer(attempt, history)
            score -= max(0, signal.penalty)
            penalties[analyzer.name] = signal.penalty
            flags.extend(f for f in signal.flags if f not in flags)

        score = max(0, min(MAX_SCORE, score))
        assessment = RiskAssessment(score=score, flags=flags, penalties=penalties)
        if score < self.settings.score_threshold:
            assessment.blocked = True
            assessment.reason = f"Security score too low: {score}. Flags: {', '.join(flags)}"
        return assessment

    async def score(self, attempt: Attempt, session: Optional[ClassSessionInfo] = None) -> RiskAssessment:
        history = await self.gather(attempt, session)
        assessment = self.evaluate(attempt, history)
        logger.debug(f"Scored attempt student={attempt.student_id} session={attempt.session_id}: {assessment.score} {assessment.flags}")
        return assessment
