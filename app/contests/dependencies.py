import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.contests.config import JWT_ALGORITHM, JWT_SECRET_KEY

logger = logging.getLogger(__name__)


def get_db_instance():
    """Get database from main module"""
    from app.main import db
    return db

# ==================== DEPENDENCY FUNCTIONS ====================

async def get_db() -> AsyncIOMotorDatabase:
    """Database dependency"""
    return get_db_instance()


class UserContext:
    """
    Identity carried by a verified bearer token
    """
    def __init__(self, payload: dict):
        self.user_id = payload.get("sub")
        self.role = payload.get("role")
        self.email = payload.get("email")
        self.payload = payload


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or Expired Token")


def verify_token(authorization: str = Header(None)) -> UserContext:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="No token provided")

    payload = decode_token(authorization.split(" ", 1)[1])
    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token: missing user id")
    return UserContext(payload)


def get_optional_user(authorization: str = Header(None)) -> Optional[UserContext]:
    """Public routes: an unusable token degrades to anonymous"""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    try:
        return verify_token(authorization)
    except HTTPException:
        return None


def require_role(*roles: str):
    """
    Dependency factory: 401 without a valid token, 403 for any other role
    """
    async def checker(user: UserContext = Depends(verify_token)) -> UserContext:
        if user.role not in roles:
            logger.info("Role %s denied (needs %s)", user.role, ", ".join(roles))
            raise HTTPException(status_code=403, detail="Access denied")
        return user
    return checker


get_current_student = require_role("student")
get_current_admin = require_role("admin")
get_current_creator = require_role("creator")
