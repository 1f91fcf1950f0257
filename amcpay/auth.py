import logging

from fastapi import Depends, Header
from jose import JWTError, jwt

from amcpay.config import Settings, get_settings
from amcpay.errors import AuthenticationError

logger = logging.getLogger(__name__)

# Supabase signs user sessions with HS256 for this audience
JWT_AUDIENCE = "authenticated"


def verify_token(
    authorization: str = Header(None),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Return the claims of the caller's session token."""
    settings.require("supabase_jwt_secret", message="Authentication not configured")
    try:
        scheme, token = (authorization or "").split()
        if scheme.lower() != "bearer":
            raise ValueError("not a bearer token")
        claims = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience=JWT_AUDIENCE,
        )
    except (ValueError, JWTError) as e:
        logger.info("Rejected session token: %s", e)
        raise AuthenticationError("Unauthorized")
    return claims
