"""
Credit Guard - Pre-execution entitlement check

Every metered AI feature (damage analysis, fault codes, OCR, chat) spends
one use here before its handler runs. On denial the handler is never
called, so the AI provider is never contacted.

Two ways to guard a route:
- Depends(require_credit) when the handler needs the consume result
- @metered("feature") for handlers that only need the gate
"""

import logging
from functools import wraps
from typing import Callable

from fastapi import Depends, HTTPException

from database import get_credit_store
from utils.auth import get_current_user

from .config import ERROR_CODES, METERED_FEATURES
from .errors import TransientStoreFailure
from .ledger_service import EntitlementLedger
from .models import ConsumeResult

logger = logging.getLogger(__name__)


async def consume_or_raise(store, user_id: str, feature: str = None) -> ConsumeResult:
    """
    Consume one use or raise the HTTP error the feature surface must return.

    402 with QUOTA_EXHAUSTED on denial (show the upgrade prompt),
    503 when the store fails (safe to retry).
    """
    ledger = EntitlementLedger(store)

    try:
        result = await ledger.consume_one(user_id)
    except TransientStoreFailure as e:
        logger.error(f"Credit check failed for user {user_id} (feature={feature}): {e}")
        raise HTTPException(status_code=503, detail=ERROR_CODES["STORE_UNAVAILABLE"])

    if not result.allowed:
        raise HTTPException(
            status_code=402,
            detail={
                "error_code": result.error_code,
                "message": result.error_message
            }
        )

    logger.info(f"Credit spent by user {user_id} on {METERED_FEATURES.get(feature, feature)}")
    return result


async def require_credit(
    user: dict = Depends(get_current_user),
    store=Depends(get_credit_store)
) -> ConsumeResult:
    """FastAPI dependency that spends one use for the current user."""
    return await consume_or_raise(store, user["id"])


def metered(feature: str):
    """
    Decorator for metered AI route handlers.

    Usage:
        @router.post("/damage/analyze")
        @metered("damage_analysis")
        async def analyze(request: DamageRequest, user: dict = Depends(get_current_user)):
            # one use already spent
            return await damage_client.analyze(...)

    Note: The decorated function must have 'user' in its parameters.
    """
    if feature not in METERED_FEATURES:
        raise ValueError(f"Unknown metered feature: {feature}")

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            user = kwargs.get('user')
            if not user or 'id' not in user:
                raise HTTPException(status_code=401, detail="User not authenticated")

            await consume_or_raise(get_credit_store(), user['id'], feature)
            return await func(*args, **kwargs)

        return wrapper
    return decorator
