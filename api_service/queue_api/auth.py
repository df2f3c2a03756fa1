"""Bearer-token authentication for the ticket routes.

Tokens are issued elsewhere; this module only verifies them and loads the
user they name.
"""

import logging
from typing import Any, Dict, Optional

import jwt
from bson import ObjectId
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings
from .database import get_database
from .errors import AuthenticationError

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify the signature and expiry of ``token`` and return its claims."""
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as error:
        raise AuthenticationError("Token expired. Please login again.") from error
    except jwt.InvalidTokenError as error:
        raise AuthenticationError("Invalid token.") from error


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict[str, Any]:
    """FastAPI dependency returning the authenticated user document."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access denied. No token provided.")

    claims = decode_access_token(credentials.credentials)
    user_id = claims.get("id")
    if not user_id or not ObjectId.is_valid(user_id):
        raise AuthenticationError("Invalid token.")

    database = get_database()
    user = await database["users"].find_one(
        {"_id": ObjectId(user_id)}, projection={"password_hash": 0}
    )
    if not user:
        raise AuthenticationError("Invalid token. User not found.")
    if not user.get("is_active", True):
        raise AuthenticationError("Account is deactivated. Please contact support.")
    return user
