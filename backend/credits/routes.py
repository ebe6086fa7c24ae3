"""
Credits API Routes

Endpoints:
- GET /api/credits - Current entitlement (remaining uses, tier)
- POST /api/credits/consume - Spend one metered use
- POST /api/credits/redeem - Redeem a premium passcode
- POST /api/credits/admin/passcodes - Generate a passcode (admin)
- GET /api/credits/admin/passcodes - List passcodes (admin)
- DELETE /api/credits/admin/passcodes/{passcode_id} - Delete an unused passcode (admin)
- GET /api/credits/admin/usage - Usage overview (admin)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from database import get_credit_store
from utils.auth import get_current_user, get_admin_user
from credits.config import ERROR_CODES, ADMIN_LIST_DEFAULT_LIMIT, ADMIN_LIST_MAX_LIMIT
from credits.errors import InvalidPrefixError, TransientStoreFailure
from credits.guard import require_credit
from credits.ledger_service import EntitlementLedger
from credits.passcode_service import PasscodeRegistry
from credits.models import (
    ConsumeResult,
    EntitlementView,
    PasscodeCreateRequest,
    PasscodeRecord,
    RedeemRequest,
    RedeemResult,
    UsageStatsResponse
)

logger = logging.getLogger(__name__)

credits_router = APIRouter(prefix="/credits", tags=["Credits"])


def store_unavailable(e: TransientStoreFailure) -> HTTPException:
    logger.error(f"Credit store failure: {e}")
    return HTTPException(status_code=503, detail=ERROR_CODES["STORE_UNAVAILABLE"])


# ==================== USER ENDPOINTS ====================

@credits_router.get("", response_model=EntitlementView)
async def get_credits(user: dict = Depends(get_current_user), store=Depends(get_credit_store)):
    """
    Get current user's entitlement.

    Returns:
        can_use, remaining uses, premium flag and lifetime use count
    """
    try:
        return await EntitlementLedger(store).query(user["id"])
    except TransientStoreFailure as e:
        raise store_unavailable(e)


@credits_router.post("/consume", response_model=ConsumeResult)
async def consume_credit(result: ConsumeResult = Depends(require_credit)):
    """
    Spend one metered use.

    Returns 402 with QUOTA_EXHAUSTED when no use is left.
    """
    return result


@credits_router.post("/redeem", response_model=RedeemResult)
async def redeem_passcode(
    body: RedeemRequest,
    user: dict = Depends(get_current_user),
    store=Depends(get_credit_store)
):
    """
    Redeem a premium passcode.

    Unknown and already-used passcodes both return 400 with NOT_FOUND_OR_USED.
    """
    try:
        result = await PasscodeRegistry(store).redeem(user["id"], body.passcode)
    except TransientStoreFailure as e:
        raise store_unavailable(e)

    if not result.success:
        raise HTTPException(
            status_code=400,
            detail={"error_code": result.error_code, "message": result.message}
        )

    return result


# ==================== ADMIN ENDPOINTS ====================

@credits_router.post("/admin/passcodes", response_model=PasscodeRecord)
async def admin_generate_passcode(
    body: PasscodeCreateRequest,
    admin: dict = Depends(get_admin_user),
    store=Depends(get_credit_store)
):
    """Generate a single-use premium passcode (admin only)."""
    try:
        return await PasscodeRegistry(store).generate(body.prefix, created_by=admin["id"])
    except InvalidPrefixError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TransientStoreFailure as e:
        raise store_unavailable(e)


@credits_router.get("/admin/passcodes")
async def admin_list_passcodes(
    limit: int = Query(ADMIN_LIST_DEFAULT_LIMIT, ge=1, le=ADMIN_LIST_MAX_LIMIT),
    admin: dict = Depends(get_admin_user),
    store=Depends(get_credit_store)
):
    """List passcodes, newest first (admin only)."""
    try:
        passcodes = await PasscodeRegistry(store).list_passcodes(limit)
    except TransientStoreFailure as e:
        raise store_unavailable(e)

    return {
        "passcodes": passcodes,
        "count": len(passcodes)
    }


@credits_router.delete("/admin/passcodes/{passcode_id}")
async def admin_delete_passcode(
    passcode_id: str,
    admin: dict = Depends(get_admin_user),
    store=Depends(get_credit_store)
):
    """Delete a passcode that has not been redeemed (admin only)."""
    try:
        deleted = await PasscodeRegistry(store).delete_unused(passcode_id)
    except TransientStoreFailure as e:
        raise store_unavailable(e)

    if not deleted:
        raise HTTPException(status_code=404, detail="Passcode not found or already used")

    return {
        "success": True,
        "message": f"Passcode {passcode_id} deleted"
    }


@credits_router.get("/admin/usage", response_model=UsageStatsResponse)
async def admin_usage_overview(
    limit: int = Query(ADMIN_LIST_DEFAULT_LIMIT, ge=1, le=ADMIN_LIST_MAX_LIMIT),
    admin: dict = Depends(get_admin_user),
    store=Depends(get_credit_store)
):
    """Usage records with the most uses first (admin only)."""
    try:
        users = await EntitlementLedger(store).usage_overview(limit)
    except TransientStoreFailure as e:
        raise store_unavailable(e)

    return UsageStatsResponse(users=users, count=len(users))
