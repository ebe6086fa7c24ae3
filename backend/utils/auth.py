"""
Authentication utilities

Tokens are issued by the external identity provider and signed with the
shared JWT_SECRET. Only the subject (user id) is used by the credits core.
"""
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
import logging
from datetime import datetime, timezone, timedelta
import os

from database import get_credit_store
from credits.config import ADMIN_ROLE, ERROR_CODES
from credits.errors import TransientStoreFailure

logger = logging.getLogger(__name__)

security = HTTPBearer()
JWT_SECRET = os.environ.get('JWT_SECRET', 'autodiag-secret-key-change-in-production')
JWT_ALGORITHM = os.environ.get('JWT_ALGORITHM', 'HS256')


def create_token(user_id: str, email: str = None, expires_in: timedelta = timedelta(days=7)) -> str:
    payload = {
        "sub": user_id,
        "email": email,
        "exp": datetime.now(timezone.utc) + expires_in
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Verify JWT token and return current user"""
    try:
        payload = jwt.decode(credentials.credentials, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    return {"id": user_id, "email": payload.get("email")}


async def get_admin_user(user: dict = Depends(get_current_user), store=Depends(get_credit_store)):
    """Check if user holds the admin role"""
    try:
        is_admin = await store.has_role(user["id"], ADMIN_ROLE)
    except TransientStoreFailure as e:
        logger.error(f"Role lookup failed for user {user['id']}: {e}")
        raise HTTPException(status_code=503, detail=ERROR_CODES["STORE_UNAVAILABLE"])

    if not is_admin:
        logger.warning(f"Admin access denied for user {user['id']}")
        raise HTTPException(status_code=403, detail=ERROR_CODES["ADMIN_REQUIRED"])
    return user
