import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import settings

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)
ALGORITHM = "HS256"


def create_jwt(payload: dict, expires_in: timedelta = timedelta(days=30)) -> str:
    now = datetime.now(timezone.utc)
    data = payload.copy()
    data["exp"] = now + expires_in
    data["iat"] = now
    return jwt.encode(data, settings.jwt_secret_key, algorithm=ALGORITHM)


def decode_jwt(token: str) -> dict:
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[ALGORITHM])


async def get_optional_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    """Caller identity from a bearer JWT, or None. Bad tokens are treated as anonymous."""
    if not credentials:
        return None
    try:
        payload = decode_jwt(credentials.credentials)
    except jwt.ExpiredSignatureError:
        logger.info("Expired token; treating caller as anonymous")
        return None
    except jwt.InvalidTokenError:
        logger.info("Invalid token; treating caller as anonymous")
        return None
    return payload.get("email") or payload.get("sub")
