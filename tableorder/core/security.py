"""
Table Order Service — Staff identity (JWT decode only, shared secret)

Placeholder authorization: a Bearer token is decoded when present so staff
mutations can be attributed in the logs, but no request is ever rejected.
"""
import logging
from typing import Any

from fastapi import Request
from jose import JWTError, jwt

from tableorder.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

ANONYMOUS_STAFF: dict[str, Any] = {"sub": "anonymous", "role": "staff"}


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


async def authorize_staff(request: Request) -> dict[str, Any]:
    """FastAPI dependency run before every staff mutation. Always authorizes."""
    claims = ANONYMOUS_STAFF
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            claims = decode_token(auth_header.split(" ", 1)[1])
        except JWTError as exc:
            logger.debug("Ignoring undecodable staff token: %s", exc)
    request.state.staff = claims
    return claims
