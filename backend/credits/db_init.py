"""
Credits Database Initialization

Prepares MongoDB for the credits service:
- user_credits, passcodes and user_roles collections (redemption
  transactions cannot create collections on older servers)
- the unique indexes the atomic operations rely on
- optional admin role grant
- init version stamp in credits_meta

Safe to re-run: nothing is dropped or overwritten. Usage records are not
created here; the ledger creates them on first metered use.

Usage:
    python -m credits.db_init [--dry-run] [--grant-admin USER_ID]
    Production additionally needs CREDITS_INIT_CONFIRM=YES.
"""

import os
import sys
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Tuple

from dotenv import load_dotenv
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import CollectionInvalid, OperationFailure, PyMongoError

load_dotenv(Path(__file__).parent.parent / '.env')

# Imported after load_dotenv so ENVIRONMENT comes from .env
from utils.environment import ENVIRONMENT, is_production
from .config import ADMIN_ROLE

logger = logging.getLogger(__name__)

INIT_VERSION = "v1.0.0"

REQUIRED_COLLECTIONS = ["user_credits", "passcodes", "user_roles", "credits_meta"]

# (collection, keys, options)
REQUIRED_INDEXES = [
    # one usage record per user; ensure_usage relies on this for concurrent first use
    ("user_credits", [("user_id", 1)], {"unique": True, "name": "idx_user_id_unique"}),
    # usage overview ordering
    ("user_credits", [("total_uses", -1)], {"name": "idx_total_uses"}),
    ("passcodes", [("id", 1)], {"unique": True, "name": "idx_passcode_id_unique"}),
    # covers used codes too, so a redeemed code is never issued again
    ("passcodes", [("code", 1)], {"unique": True, "name": "idx_code_unique"}),
    ("passcodes", [("created_at", -1)], {"name": "idx_created_at"}),
    ("user_roles", [("user_id", 1), ("role", 1)], {"unique": True, "name": "idx_user_role_unique"}),
]


def check_environment() -> Tuple[bool, str]:
    """Refuse production runs unless CREDITS_INIT_CONFIRM=YES."""
    if is_production() and os.environ.get("CREDITS_INIT_CONFIRM") != "YES":
        return False, "Refusing to initialise production without CREDITS_INIT_CONFIRM=YES"
    return True, f"Environment: {ENVIRONMENT}"


async def ensure_collections(db, dry_run: bool = False) -> List[str]:
    """Create the credits collections that are missing."""
    existing = set(await db.list_collection_names())
    results = []

    for name in REQUIRED_COLLECTIONS:
        if name in existing:
            results.append(f"[SKIP] collection {name}")
        elif dry_run:
            results.append(f"[DRY-RUN] would create collection {name}")
        else:
            try:
                await db.create_collection(name)
                results.append(f"[CREATE] collection {name}")
            except CollectionInvalid:
                # created by a concurrent init
                results.append(f"[SKIP] collection {name}")

    return results


async def create_index_if_not_exists(
    db,
    collection_name: str,
    keys: List[Tuple],
    options: dict,
    dry_run: bool = False
) -> str:
    """Create one index unless an index with the same name exists (also used at server startup)."""
    collection = db[collection_name]
    index_name = options["name"]

    if index_name in await collection.index_information():
        return f"[SKIP] index {collection_name}.{index_name}"

    if dry_run:
        return f"[DRY-RUN] would create index {collection_name}.{index_name}"

    try:
        await collection.create_index(keys, **options)
    except OperationFailure as e:
        if "already exists" not in str(e).lower():
            raise
        return f"[SKIP] index {collection_name}.{index_name} (race)"
    return f"[CREATE] index {collection_name}.{index_name}"


async def grant_admin_role(db, user_id: str, dry_run: bool = False) -> str:
    """Give a user the admin role used by the passcode admin endpoints."""
    if dry_run:
        return f"[DRY-RUN] would grant {ADMIN_ROLE} to {user_id}"

    result = await db.user_roles.update_one(
        {"user_id": user_id, "role": ADMIN_ROLE},
        {"$setOnInsert": {"created_at": datetime.now(timezone.utc)}},
        upsert=True
    )
    if result.upserted_id is None:
        return f"[SKIP] {user_id} already has {ADMIN_ROLE}"
    return f"[CREATE] granted {ADMIN_ROLE} to {user_id}"


async def update_version_stamp(db, dry_run: bool = False) -> str:
    if dry_run:
        return f"[DRY-RUN] would stamp {INIT_VERSION}"

    await db.credits_meta.update_one(
        {"_id": "credits_init"},
        {"$set": {"version": INIT_VERSION, "applied_at": datetime.now(timezone.utc)}},
        upsert=True
    )
    return f"[UPDATE] stamped {INIT_VERSION}"


async def init_database(db, dry_run: bool = False, admin_user_id: str = None) -> List[str]:
    """Run every init step against `db` and return the step results in order."""
    results = await ensure_collections(db, dry_run)

    for collection_name, keys, options in REQUIRED_INDEXES:
        results.append(await create_index_if_not_exists(db, collection_name, keys, options, dry_run))

    if admin_user_id:
        results.append(await grant_admin_role(db, admin_user_id, dry_run))

    results.append(await update_version_stamp(db, dry_run))
    return results


async def run_init(dry_run: bool = False, admin_user_id: str = None) -> int:
    """Connect using MONGO_URL/DB_NAME and initialise. Returns the process exit code."""
    allowed, message = check_environment()
    if not allowed:
        logger.error(message)
        return 1
    logger.info(message)

    mongo_url = os.environ.get('MONGO_URL')
    db_name = os.environ.get('DB_NAME')
    if not mongo_url or not db_name:
        logger.error("MONGO_URL and DB_NAME must be set")
        return 1

    client = AsyncIOMotorClient(mongo_url, tz_aware=True)
    try:
        await client.admin.command('ping')
        for line in await init_database(client[db_name], dry_run, admin_user_id):
            logger.info(line)
    except PyMongoError as e:
        logger.error(f"Credits init failed on {db_name}: {e}")
        return 1
    finally:
        client.close()

    logger.info(f"Credits init {'dry run ' if dry_run else ''}complete on {db_name}")
    return 0


def main():
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description="Create credits collections, indexes and admin roles")
    parser.add_argument('--dry-run', action='store_true', help='Print what would be done without making changes')
    parser.add_argument('--grant-admin', metavar='USER_ID', help='Grant the admin role to this user id')
    args = parser.parse_args()

    sys.exit(asyncio.run(run_init(dry_run=args.dry_run, admin_user_id=args.grant_admin)))


if __name__ == "__main__":
    main()
