"""
Database connection and configuration

Environment Validation
Fails fast with clear error messages if required variables are missing.
"""
from motor.motor_asyncio import AsyncIOMotorClient
import os
import logging
from pathlib import Path
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Imported after load_dotenv so ENVIRONMENT and CREDITS_STORE come from .env
from utils.environment import get_store_backend
from credits.store import MongoCreditStore
from credits.memory_store import MemoryCreditStore


def validate_required_env_vars():
    """
    Validate all critical environment variables exist before the app starts.
    Raises ValueError with clear error message if required variables are missing.
    """
    required_vars = {
        "MONGO_URL": "MongoDB replica set connection string (e.g., mongodb://localhost:27017/?replicaSet=rs0)",
        "DB_NAME": "Database name (e.g., autodiag)"
    }

    missing = []
    for var, description in required_vars.items():
        if not os.environ.get(var):
            missing.append(f"  - {var}: {description}")

    if missing:
        error_msg = (
            "\n" + "=" * 60 + "\n"
            "CRITICAL: Missing required environment variables!\n"
            "=" * 60 + "\n"
            "The following environment variables must be set:\n\n"
            + "\n".join(missing) + "\n\n"
            "Please check your .env file or environment configuration.\n"
            "See .env.example for reference.\n"
            + "=" * 60
        )
        raise ValueError(error_msg)


STORE_BACKEND = get_store_backend()

client = None
db = None

if STORE_BACKEND == "mongo":
    # Validate environment variables on module load
    validate_required_env_vars()

    # MongoDB connection with connection pool configuration
    mongo_url = os.environ['MONGO_URL']

    try:
        client = AsyncIOMotorClient(
            mongo_url,
            maxPoolSize=50,
            minPoolSize=10,
            connectTimeoutMS=5000,
            serverSelectionTimeoutMS=5000,
            retryWrites=True,
            tz_aware=True
        )
    except Exception as e:
        raise ValueError(f"Failed to create MongoDB client: {e}")

    db = client[os.environ['DB_NAME']]

_credit_store = None


def get_credit_store():
    """Return the process-wide credit store (FastAPI dependency)."""
    global _credit_store
    if _credit_store is None:
        if STORE_BACKEND == "mongo":
            _credit_store = MongoCreditStore(client, db)
        else:
            logger.warning("Using in-memory credit store; usage data is lost on restart")
            _credit_store = MemoryCreditStore()
    return _credit_store


async def check_db_connection():
    """
    Test database connection health.

    Returns:
        Tuple[bool, Optional[str]]: (success, error_message)
    """
    if STORE_BACKEND != "mongo":
        return True, None

    try:
        # Ping the database
        await client.admin.command('ping')

        # Test if we can read from a collection
        db_name = os.environ['DB_NAME']
        await db.list_collection_names()

        logger.info(f"Database connected successfully: {db_name}")
        return True, None

    except Exception as e:
        error_msg = f"Database connection failed: {e}"
        logger.error(error_msg)
        return False, error_msg
