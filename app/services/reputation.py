import logging
from datetime import timedelta
from typing import List, Optional

from app.repositories.base import AssociationRepository, BlockListRepository
from app.schemas.security import (
    Association,
    BlockedIdentity,
    IdentityKind,
    IncidentType,
    Severity,
)
from app.services.incidents import IncidentRecorder
from app.utils.clock import Clock

logger = logging.getLogger(__name__)

_BLOCK_INCIDENT = {
    IdentityKind.device: (IncidentType.device_blocked, IncidentType.device_unblocked),
    IdentityKind.network: (IncidentType.network_blocked, IncidentType.network_unblocked),
}


class ReputationStore:
    """
    Device and network identity history plus the persisted block list.

    Block status is always read from the block list repository, so a block
    made by one worker is seen by every other worker on its next lookup.
    """

    def __init__(
        self,
        associations: AssociationRepository,
        blocklist: BlockListRepository,
        incidents: IncidentRecorder,
        clock: Clock,
    ):
        self.associations = associations
        self.blocklist = blocklist
        self.incidents = incidents
        self.clock = clock

    async def record_association(self, association: Association) -> None:
        await self.associations.append(association)

    async def is_blocked(self, kind: IdentityKind, identity: str) -> bool:
        return await self.blocklist.contains(kind, identity)

    async def block(self, kind: IdentityKind, identity: str, reason: str, **context) -> None:
        blocked_type, _ = _BLOCK_INCIDENT[kind]
        await self.blocklist.add(
            BlockedIdentity(kind=kind, identity=identity, reason=reason, blocked_at=self.clock.now())
        )
        logger.warning(f"⛔ Blocked {kind.value} {identity[:10]}...: {reason}")
        fields = {**context, **self._identity_fields(kind, identity)}
        await self.incidents.record(blocked_type, Severity.high, reason, **fields)

    async def unblock(self, kind: IdentityKind, identity: str, reason: Optional[str] = None) -> None:
        _, unblocked_type = _BLOCK_INCIDENT[kind]
        await self.blocklist.remove(kind, identity)
        logger.info(f"✅ Unblocked {kind.value} {identity[:10]}...")
        await self.incidents.record(
            unblocked_type, Severity.low, reason or f"{kind.value.capitalize()} unblocked by admin",
            **self._identity_fields(kind, identity),
        )

    async def history(
        self,
        kind: IdentityKind,
        value: str,
        window: timedelta,
        limit: Optional[int] = None,
    ) -> List[Association]:
        return await self.associations.history(kind, value, self.clock.now() - window, limit)

    async def blocked_identities(self) -> List[BlockedIdentity]:
        return await self.blocklist.all()

    @staticmethod
    def _identity_fields(kind: IdentityKind, identity: str) -> dict:
        if kind == IdentityKind.device:
            return {"device_fingerprint": identity}
        return {"network_identity": identity}
