"""
Credits Data Models

Pydantic models for credit operations.
These define the structure of documents stored in MongoDB collections
and the shapes returned by the API.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from .config import DEFAULT_PASSCODE_PREFIX


# ==================== STORED DOCUMENTS ====================

class UsageRecord(BaseModel):
    """Per-user usage counters (user_credits collection)"""
    user_id: str
    total_uses: int = 0
    premium_uses_remaining: int = 0
    premium_expires_at: Optional[datetime] = None
    attached_passcode_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PasscodeRecord(BaseModel):
    """Administrator-issued activation code (passcodes collection)"""
    id: str
    code: str
    used: bool = False
    created_at: datetime
    created_by: Optional[str] = None
    used_by: Optional[str] = None
    used_at: Optional[datetime] = None


# ==================== ENTITLEMENT MODELS ====================

class EntitlementView(BaseModel):
    """Current entitlement for a user, computed at read time"""
    can_use: bool
    remaining: int
    is_premium: bool
    total_uses: int
    premium_expires_at: Optional[datetime] = None


class ConsumeResult(BaseModel):
    """Result of consuming one metered use"""
    allowed: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    view: Optional[EntitlementView] = None


# ==================== REDEMPTION MODELS ====================

class RedeemRequest(BaseModel):
    """Request to redeem a premium passcode"""
    passcode: str = Field(..., description="Passcode such as AUTO-ABCD2345")


class RedeemResult(BaseModel):
    """Result of a passcode redemption"""
    success: bool
    message: str
    error_code: Optional[str] = None
    view: Optional[EntitlementView] = None


# ==================== ADMIN MODELS ====================

class PasscodeCreateRequest(BaseModel):
    """Request to generate a passcode"""
    prefix: str = Field(DEFAULT_PASSCODE_PREFIX, description="1-6 letters or digits, uppercased")


class UsageStat(BaseModel):
    """Usage overview row for the admin dashboard"""
    user_id: str
    view: Optional[EntitlementView] = None
    attached_passcode_id: Optional[str] = None


class UsageStatsResponse(BaseModel):
    """Usage overview for the admin dashboard"""
    users: List[UsageStat]
    count: int
