"""
In-memory credit store for local development and tests.

Same contract as MongoCreditStore. Every operation runs under one
asyncio.Lock, which gives the same all-or-nothing behaviour as the
conditional updates and the redemption transaction. State lives only in
this process, so it must never back a multi-worker deployment.
"""

import asyncio
from datetime import datetime
from typing import Optional, Tuple, Dict, Any, List

from .entitlement import is_premium_active
from .errors import DuplicatePasscodeError
from .store import new_usage_document


class MemoryCreditStore:
    """Credit store kept in process memory."""

    def __init__(self):
        self._usage: Dict[str, Dict[str, Any]] = {}
        self._passcodes: Dict[str, Dict[str, Any]] = {}
        # code -> passcode id, mirrors the unique index on code
        self._codes: Dict[str, str] = {}
        self._roles = set()
        self._lock = asyncio.Lock()

    # ==================== USAGE RECORDS ====================

    async def get_usage(self, user_id: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            record = self._usage.get(user_id)
            return dict(record) if record else None

    async def ensure_usage(self, user_id: str, now: datetime) -> None:
        async with self._lock:
            if user_id not in self._usage:
                self._usage[user_id] = new_usage_document(user_id, now)

    async def put_usage(self, record: Dict[str, Any]) -> None:
        """Replace a usage record wholesale (seeding only)."""
        async with self._lock:
            self._usage[record["user_id"]] = dict(record)

    async def consume_one(
        self,
        user_id: str,
        now: datetime,
        free_limit: int
    ) -> Optional[Dict[str, Any]]:
        async with self._lock:
            record = self._usage.get(user_id)
            if record is None:
                return None

            if is_premium_active(record.get("premium_expires_at"), now):
                if record["premium_uses_remaining"] <= 0:
                    return None
                record["premium_uses_remaining"] -= 1
            elif record["total_uses"] >= free_limit:
                return None

            record["total_uses"] += 1
            record["updated_at"] = now
            return dict(record)

    async def list_usage(self, limit: int) -> List[Dict[str, Any]]:
        async with self._lock:
            records = sorted(self._usage.values(), key=lambda r: r["total_uses"], reverse=True)
            return [dict(r) for r in records[:limit]]

    # ==================== PASSCODES ====================

    async def insert_passcode(self, passcode: Dict[str, Any]) -> None:
        async with self._lock:
            if passcode["code"] in self._codes:
                raise DuplicatePasscodeError(passcode["code"])
            self._passcodes[passcode["id"]] = dict(passcode)
            self._codes[passcode["code"]] = passcode["id"]

    async def redeem_passcode(
        self,
        code: str,
        user_id: str,
        now: datetime,
        premium_expires_at: datetime,
        premium_uses: int
    ) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
        async with self._lock:
            passcode = self._passcodes.get(self._codes.get(code))
            if passcode is None or passcode["used"]:
                return None

            record = self._usage.get(user_id) or new_usage_document(user_id, now)
            record.update({
                "premium_uses_remaining": premium_uses,
                "premium_expires_at": premium_expires_at,
                "attached_passcode_id": passcode["id"],
                "updated_at": now
            })
            passcode.update({"used": True, "used_by": user_id, "used_at": now})
            self._usage[user_id] = record

            return dict(passcode), dict(record)

    async def list_passcodes(self, limit: int) -> List[Dict[str, Any]]:
        async with self._lock:
            passcodes = sorted(self._passcodes.values(), key=lambda p: p["created_at"], reverse=True)
            return [dict(p) for p in passcodes[:limit]]

    async def delete_unused_passcode(self, passcode_id: str) -> bool:
        async with self._lock:
            passcode = self._passcodes.get(passcode_id)
            if passcode is None or passcode["used"]:
                return False
            del self._passcodes[passcode_id]
            del self._codes[passcode["code"]]
            return True

    # ==================== ROLES ====================

    async def has_role(self, user_id: str, role: str) -> bool:
        async with self._lock:
            return (user_id, role) in self._roles

    async def grant_role(self, user_id: str, role: str, now: datetime) -> None:
        async with self._lock:
            self._roles.add((user_id, role))
