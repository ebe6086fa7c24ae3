"""
Entitlement Ledger Service

Core usage operations:
- Entitlement queries (no record needed)
- Lazy usage record creation
- Consuming one metered use (atomic, concurrency-safe)
- Usage overview for admins

CRITICAL: The decision to allow a use and the counter update happen in
one conditional store operation. Nothing here reads a record, changes it
and writes it back.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from .config import FREE_LIMIT, ERROR_CODES
from .entitlement import build_view, utc_now
from .errors import TransientStoreFailure
from .models import ConsumeResult, EntitlementView, UsageStat

logger = logging.getLogger(__name__)


class EntitlementLedger:
    """Service for querying and consuming a user's metered uses."""

    def __init__(self, store, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utc_now

    async def query(self, user_id: str) -> EntitlementView:
        """
        Get the current entitlement for a user.

        Premium status is evaluated against the clock at call time. A user
        with no record yet gets the fresh free-tier view; nothing is created.
        """
        record = await self.store.get_usage(user_id)
        return build_view(record, self.clock())

    async def consume_one(self, user_id: str) -> ConsumeResult:
        """
        Consume one metered use.

        Premium uses are spent while premium is active; otherwise the free
        allowance is counted down. A denied call changes nothing.

        Raises:
            TransientStoreFailure: the store could not complete the operation
        """
        now = self.clock()

        await self.store.ensure_usage(user_id, now)
        record = await self.store.consume_one(user_id, now, FREE_LIMIT)

        if record is None:
            logger.info(f"Metered use denied for user {user_id}: quota exhausted")
            return ConsumeResult(
                allowed=False,
                error_code="QUOTA_EXHAUSTED",
                error_message=ERROR_CODES["QUOTA_EXHAUSTED"],
                view=await self._denied_view(user_id, now)
            )

        view = build_view(record, now)
        logger.info(
            f"Metered use consumed for user {user_id} "
            f"(premium={view.is_premium}, remaining={view.remaining})"
        )
        return ConsumeResult(allowed=True, view=view)

    async def usage_overview(self, limit: int) -> List[UsageStat]:
        """Usage records with the most uses first, each as an entitlement view."""
        now = self.clock()
        records = await self.store.list_usage(limit)
        return [
            UsageStat(
                user_id=record["user_id"],
                view=build_view(record, now),
                attached_passcode_id=record.get("attached_passcode_id")
            )
            for record in records
        ]

    async def _denied_view(self, user_id: str, now: datetime) -> Optional[EntitlementView]:
        """Current view after a denial; None if it cannot be read (the denial stands)."""
        try:
            return build_view(await self.store.get_usage(user_id), now)
        except TransientStoreFailure as e:
            logger.warning(f"Could not read usage for user {user_id} after denial: {e}")
            return None
