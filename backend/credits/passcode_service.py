"""
Passcode Registry Service

Premium activation codes:
- Generation (admin only, enforced at the route)
- Redemption (single use, atomic with the premium grant)
- Listing and deletion of unused codes for the admin dashboard

Codes look like AUTO-7KQ2MZ9D: an admin-chosen prefix plus 8 characters
from an alphabet without look-alike characters (no 0/O, 1/I).
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .config import (
    PASSCODE_ALPHABET,
    PASSCODE_SUFFIX_LENGTH,
    PASSCODE_PREFIX_MAX_LENGTH,
    PASSCODE_MAX_LENGTH,
    PASSCODE_GENERATE_MAX_ATTEMPTS,
    PREMIUM_USES,
    PREMIUM_DURATION_DAYS,
    ERROR_CODES,
    REDEEM_SUCCESS_MESSAGE
)
from .entitlement import build_view, utc_now
from .errors import DuplicatePasscodeError, InvalidPrefixError, TransientStoreFailure
from .models import PasscodeRecord, RedeemResult

logger = logging.getLogger(__name__)


def normalize_prefix(prefix: str) -> str:
    """Uppercase and validate an admin-supplied prefix."""
    normalized = (prefix or "").strip().upper()
    if not normalized or len(normalized) > PASSCODE_PREFIX_MAX_LENGTH:
        raise InvalidPrefixError(ERROR_CODES["INVALID_PREFIX"])
    if not (normalized.isascii() and normalized.isalnum()):
        raise InvalidPrefixError(ERROR_CODES["INVALID_PREFIX"])
    return normalized


def normalize_code(submitted: str) -> str:
    """Match the stored form: no surrounding whitespace, uppercase."""
    return (submitted or "").strip().upper()


def random_suffix() -> str:
    return "".join(secrets.choice(PASSCODE_ALPHABET) for _ in range(PASSCODE_SUFFIX_LENGTH))


class PasscodeRegistry:
    """Service for issuing and redeeming premium passcodes."""

    def __init__(self, store, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utc_now

    async def generate(self, prefix: str, created_by: Optional[str] = None) -> PasscodeRecord:
        """
        Create a new unused passcode.

        Args:
            prefix: 1-6 letters or digits, uppercased before use
            created_by: admin user id, kept for audit only

        Raises:
            InvalidPrefixError: prefix fails validation
            TransientStoreFailure: store error, or no unique code after retries
        """
        prefix = normalize_prefix(prefix)

        for attempt in range(1, PASSCODE_GENERATE_MAX_ATTEMPTS + 1):
            passcode = PasscodeRecord(
                id=str(uuid.uuid4()),
                code=f"{prefix}-{random_suffix()}",
                used=False,
                created_at=self.clock(),
                created_by=created_by
            )
            try:
                await self.store.insert_passcode(passcode.model_dump())
            except DuplicatePasscodeError:
                logger.warning(f"Passcode collision for prefix {prefix} (attempt {attempt})")
                continue

            logger.info(f"Generated passcode {passcode.id} with prefix {prefix} (by {created_by})")
            return passcode

        raise TransientStoreFailure(
            "generate_passcode",
            f"no unique code after {PASSCODE_GENERATE_MAX_ATTEMPTS} attempts"
        )

    async def redeem(self, user_id: str, submitted_code: str) -> RedeemResult:
        """
        Redeem a passcode for the user.

        Marks the code used and starts a premium period of
        PREMIUM_DURATION_DAYS with PREMIUM_USES uses, in one atomic unit.
        Unknown and already-used codes get the same answer.

        Raises:
            TransientStoreFailure: the store could not complete the unit (nothing applied)
        """
        code = normalize_code(submitted_code)
        if not code or len(code) > PASSCODE_MAX_LENGTH:
            return self._not_found_or_used(user_id)

        now = self.clock()
        redeemed = await self.store.redeem_passcode(
            code=code,
            user_id=user_id,
            now=now,
            premium_expires_at=now + timedelta(days=PREMIUM_DURATION_DAYS),
            premium_uses=PREMIUM_USES
        )

        if redeemed is None:
            return self._not_found_or_used(user_id)

        passcode, record = redeemed
        logger.info(f"User {user_id} redeemed passcode {passcode['id']}; premium until {record['premium_expires_at']}")

        return RedeemResult(
            success=True,
            message=REDEEM_SUCCESS_MESSAGE,
            view=build_view(record, now)
        )

    async def list_passcodes(self, limit: int) -> List[PasscodeRecord]:
        docs = await self.store.list_passcodes(limit)
        return [PasscodeRecord(**doc) for doc in docs]

    async def delete_unused(self, passcode_id: str) -> bool:
        """Delete a passcode that has not been redeemed. Used codes are kept for audit."""
        deleted = await self.store.delete_unused_passcode(passcode_id)
        if deleted:
            logger.info(f"Deleted unused passcode {passcode_id}")
        return deleted

    def _not_found_or_used(self, user_id: str) -> RedeemResult:
        logger.info(f"Passcode redemption rejected for user {user_id}")
        return RedeemResult(
            success=False,
            error_code="NOT_FOUND_OR_USED",
            message=ERROR_CODES["NOT_FOUND_OR_USED"]
        )
