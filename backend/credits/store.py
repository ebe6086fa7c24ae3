"""
Credit Store (MongoDB)

Durable storage for usage records, passcodes and roles.

CRITICAL: Quota consumption is a single conditional find_one_and_update,
so two concurrent requests can never both spend the last use. Redemption
runs in a multi-document transaction (requires a replica set), so a
passcode is never marked used without its premium grant.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple, Dict, Any, List

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from .errors import TransientStoreFailure, DuplicatePasscodeError
from .models import UsageRecord

logger = logging.getLogger(__name__)

# Never return Mongo's internal _id
NO_ID = {"_id": 0}


def new_usage_document(user_id: str, now: datetime) -> Dict[str, Any]:
    """Initial usage record for a user who has never been metered."""
    return UsageRecord(user_id=user_id, created_at=now, updated_at=now).model_dump()


def consume_filter(user_id: str, now: datetime, free_limit: int) -> Dict[str, Any]:
    """
    Match the user's record only if one more use is allowed at `now`.

    Either premium is active with uses left, or premium is not active
    and the free allowance is not spent.
    """
    return {
        "user_id": user_id,
        "$or": [
            {
                "premium_expires_at": {"$gt": now},
                "premium_uses_remaining": {"$gt": 0}
            },
            {
                "$and": [
                    {"$or": [
                        {"premium_expires_at": None},
                        {"premium_expires_at": {"$lte": now}}
                    ]},
                    {"total_uses": {"$lt": free_limit}}
                ]
            }
        ]
    }


def consume_update(now: datetime) -> List[Dict[str, Any]]:
    """Pipeline update: spend a premium use while premium is active, always count the use."""
    return [
        {
            "$set": {
                "premium_uses_remaining": {
                    "$cond": [
                        {"$gt": ["$premium_expires_at", now]},
                        {"$subtract": ["$premium_uses_remaining", 1]},
                        "$premium_uses_remaining"
                    ]
                },
                "total_uses": {"$add": ["$total_uses", 1]},
                "updated_at": now
            }
        }
    ]


class MongoCreditStore:
    """Credit store backed by MongoDB collections."""

    def __init__(self, client, db):
        self.client = client
        self.db = db

    # ==================== USAGE RECORDS ====================

    async def get_usage(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.db.user_credits.find_one({"user_id": user_id}, NO_ID)
        except PyMongoError as e:
            raise TransientStoreFailure("get_usage", str(e)) from e

    async def ensure_usage(self, user_id: str, now: datetime) -> None:
        """Create the usage record if it does not exist yet."""
        try:
            await self.db.user_credits.update_one(
                {"user_id": user_id},
                {"$setOnInsert": new_usage_document(user_id, now)},
                upsert=True
            )
        except DuplicateKeyError:
            # A concurrent request inserted it first
            logger.debug(f"Usage record for user {user_id} created concurrently")
        except PyMongoError as e:
            raise TransientStoreFailure("ensure_usage", str(e)) from e

    async def consume_one(
        self,
        user_id: str,
        now: datetime,
        free_limit: int
    ) -> Optional[Dict[str, Any]]:
        """
        Atomically consume one use.

        Returns the post-update record, or None if no use is left
        (in which case nothing was modified).
        """
        try:
            return await self.db.user_credits.find_one_and_update(
                consume_filter(user_id, now, free_limit),
                consume_update(now),
                projection=NO_ID,
                return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise TransientStoreFailure("consume_one", str(e)) from e

    async def list_usage(self, limit: int) -> List[Dict[str, Any]]:
        """Usage records with the most uses first."""
        try:
            cursor = self.db.user_credits.find({}, NO_ID).sort("total_uses", -1).limit(limit)
            return await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise TransientStoreFailure("list_usage", str(e)) from e

    # ==================== PASSCODES ====================

    async def insert_passcode(self, passcode: Dict[str, Any]) -> None:
        try:
            # insert_one adds _id to the dict it is given
            await self.db.passcodes.insert_one(dict(passcode))
        except DuplicateKeyError as e:
            raise DuplicatePasscodeError(passcode["code"]) from e
        except PyMongoError as e:
            raise TransientStoreFailure("insert_passcode", str(e)) from e

    async def redeem_passcode(
        self,
        code: str,
        user_id: str,
        now: datetime,
        premium_expires_at: datetime,
        premium_uses: int
    ) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
        """
        Mark an unused passcode as used and grant premium to the user, in one transaction.

        Returns (passcode, usage_record) after the grant, or None if no
        unused passcode matches `code`.
        """
        async def _redeem(session):
            passcode = await self.db.passcodes.find_one_and_update(
                {"code": code, "used": False},
                {"$set": {"used": True, "used_by": user_id, "used_at": now}},
                projection=NO_ID,
                return_document=ReturnDocument.AFTER,
                session=session
            )
            if passcode is None:
                return None

            usage = await self.db.user_credits.find_one_and_update(
                {"user_id": user_id},
                {
                    "$set": {
                        "premium_uses_remaining": premium_uses,
                        "premium_expires_at": premium_expires_at,
                        "attached_passcode_id": passcode["id"],
                        "updated_at": now
                    },
                    "$setOnInsert": {
                        "total_uses": 0,
                        "created_at": now
                    }
                },
                projection=NO_ID,
                upsert=True,
                return_document=ReturnDocument.AFTER,
                session=session
            )
            return passcode, usage

        try:
            async with await self.client.start_session() as session:
                return await session.with_transaction(_redeem)
        except PyMongoError as e:
            raise TransientStoreFailure("redeem_passcode", str(e)) from e

    async def list_passcodes(self, limit: int) -> List[Dict[str, Any]]:
        """Passcodes, newest first."""
        try:
            cursor = self.db.passcodes.find({}, NO_ID).sort("created_at", -1).limit(limit)
            return await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise TransientStoreFailure("list_passcodes", str(e)) from e

    async def delete_unused_passcode(self, passcode_id: str) -> bool:
        """Delete a passcode only if it has not been redeemed."""
        try:
            result = await self.db.passcodes.delete_one({"id": passcode_id, "used": False})
        except PyMongoError as e:
            raise TransientStoreFailure("delete_unused_passcode", str(e)) from e
        return result.deleted_count > 0

    # ==================== ROLES ====================

    async def has_role(self, user_id: str, role: str) -> bool:
        try:
            doc = await self.db.user_roles.find_one({"user_id": user_id, "role": role}, NO_ID)
        except PyMongoError as e:
            raise TransientStoreFailure("has_role", str(e)) from e
        return doc is not None

    async def grant_role(self, user_id: str, role: str, now: datetime) -> None:
        try:
            await self.db.user_roles.update_one(
                {"user_id": user_id, "role": role},
                {"$setOnInsert": {"created_at": now}},
                upsert=True
            )
        except PyMongoError as e:
            raise TransientStoreFailure("grant_role", str(e)) from e
