"""
Entitlement rules.

Pure functions shared by the ledger and both stores. Premium status is
always derived from premium_expires_at at read time and never stored.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any

from .config import FREE_LIMIT
from .models import EntitlementView


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_premium_active(premium_expires_at: Optional[datetime], now: datetime) -> bool:
    """True iff a premium period is set and ends strictly after now."""
    if premium_expires_at is None:
        return False
    if premium_expires_at.tzinfo is None:
        # Stored as UTC
        premium_expires_at = premium_expires_at.replace(tzinfo=timezone.utc)
    return premium_expires_at > now


def remaining_uses(record: Optional[Dict[str, Any]], now: datetime) -> int:
    """Uses left for the tier the record is on at `now`."""
    if not record:
        return FREE_LIMIT
    if is_premium_active(record.get("premium_expires_at"), now):
        return max(0, record.get("premium_uses_remaining", 0))
    return max(0, FREE_LIMIT - record.get("total_uses", 0))


def build_view(record: Optional[Dict[str, Any]], now: datetime) -> EntitlementView:
    """
    Build the entitlement view for a usage record.

    A missing record is a fresh free-tier user.
    """
    if not record:
        return EntitlementView(
            can_use=True,
            remaining=FREE_LIMIT,
            is_premium=False,
            total_uses=0
        )

    premium = is_premium_active(record.get("premium_expires_at"), now)
    remaining = remaining_uses(record, now)

    return EntitlementView(
        can_use=remaining > 0,
        remaining=remaining,
        is_premium=premium,
        total_uses=record.get("total_uses", 0),
        premium_expires_at=record.get("premium_expires_at") if premium else None
    )
