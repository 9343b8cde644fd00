# src/perpindexer/application/services/holding_service.py
import logging
from typing import Optional

from perpindexer.domain.entities import DeltaKind, HoldingDelta, UserHolding
from perpindexer.domain.ports import StoreSession
from perpindexer.infrastructure.monitoring.metrics import ORPHAN_CLOSURES

log = logging.getLogger(__name__)


class HoldingService:
    """Maintains the per-(user, engine) aggregate. Must run inside the event's transaction."""

    def update_holding(self, session: StoreSession, user: str, engine: str,
                       delta: HoldingDelta) -> Optional[UserHolding]:
        """
        Read-modify-write of one UserHolding.

        An Open creates the aggregate when absent. A Close/Liquidate for a
        user with no aggregate on record changes nothing and returns None.
        """
        current = session.get_holding(user, engine)
        if current is None:
            if delta.kind != DeltaKind.OPEN:
                log.debug(f"No holding for {user} on {engine}; {delta.kind.value} delta skipped.")
                ORPHAN_CLOSURES.inc()
                return None
            current = UserHolding.zero(user, engine)
        updated = current.apply(delta)
        session.put_holding(updated)
        return updated
