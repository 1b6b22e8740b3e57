"""
Password hashing and JWT access tokens.
"""

import logging
import os
from datetime import timedelta
from typing import Dict, Optional

import bcrypt
import jwt
from dotenv import load_dotenv

from backend.utils.datetime_utils import utcnow

load_dotenv()

logger = logging.getLogger(__name__)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return bcrypt.checkpw(password.encode(), hashed.encode())


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed access token.

    Args:
        data: Claims to embed (expects at least "user_id")
        expires_delta: Lifetime override, defaults to ACCESS_TOKEN_EXPIRE_MINUTES

    Returns:
        Encoded JWT string
    """
    payload = dict(data)
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    payload["exp"] = expire
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[Dict]:
    """
    Decode and validate a token.

    Returns:
        The payload, or None when the token is expired or malformed
    """
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug("Rejected expired access token")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"Rejected invalid access token: {e}")
        return None
