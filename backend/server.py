from fastapi import FastAPI, APIRouter, HTTPException
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from database import STORE_BACKEND, client, db, check_db_connection, get_credit_store
from credits.config import ADMIN_ROLE
from credits.db_init import REQUIRED_INDEXES, create_index_if_not_exists
from credits.entitlement import utc_now
from credits.routes import credits_router

# Create the main app
app = FastAPI(title="AutoDiag - Credits Service")

api_router = APIRouter(prefix="/api")


@api_router.get("/health")
async def health():
    """Store connectivity check"""
    db_ok, db_error = await check_db_connection()
    if not db_ok:
        raise HTTPException(status_code=503, detail=db_error)
    return {"status": "ok", "store": STORE_BACKEND}


# Include all routers
# Credits: usage metering, passcode redemption, admin passcodes
api_router.include_router(credits_router)

app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=[origin.strip() for origin in os.environ.get(
        'CORS_ORIGINS', 'http://localhost:3000').split(',')],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@app.on_event("startup")
async def startup():
    # Check database connection first - fail fast if database is unavailable
    db_ok, db_error = await check_db_connection()
    if not db_ok:
        logger.critical(f"Database connection failed on startup: {db_error}")
        raise RuntimeError(
            f"Cannot start application - database connection failed: {db_error}")

    if STORE_BACKEND == "mongo":
        # Create indexes (same definitions as the db_init CLI)
        for collection_name, index_spec, options in REQUIRED_INDEXES:
            result = await create_index_if_not_exists(db, collection_name, index_spec, options)
            logger.info(result)

        logger.info("Credit store: mongo, indexes ensured")
    else:
        logger.info("Credit store: memory (no indexes to create)")

    # Seed administrators listed in ADMIN_USER_IDS
    store = get_credit_store()
    for user_id in filter(None, (u.strip() for u in os.environ.get("ADMIN_USER_IDS", "").split(","))):
        await store.grant_role(user_id, ADMIN_ROLE, utc_now())
        logger.info(f"Admin role ensured for user {user_id}")


@app.on_event("shutdown")
async def shutdown_db_client():
    # Close MongoDB client
    if client is not None:
        client.close()
