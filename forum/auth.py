import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from forum import config, errors


logger = logging.getLogger(__name__)


##########
# JWT Token
##########
def create_access_token(data: dict, expires_delta: timedelta = None) -> str:
    """Create JWT token with expiration"""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(hours=config.ACCESS_TOKEN_EXPIRE_HOURS)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """Verify JWT token, return payload or None if invalid"""
    try:
        return jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
        return None
    except jwt.PyJWTError as exc:
        logger.warning("Rejected token: %s", exc)
        return None


def email_from_token(token: Optional[str]) -> str:
    """Return the verified email carried by a session token or raise Unauthorized"""
    if not token:
        raise errors.Unauthorized()
    payload = verify_token(token)
    if not payload or not payload.get("email"):
        raise errors.Unauthorized()
    return payload["email"]
