from datetime import timedelta

import jwt

from app.core.clock import system_clock
from app.core.config import settings
from app.core.exceptions import InvalidTokenError

ALGORITHM = "HS256"
ACCEPT_TOKEN_EXPIRE_HOURS = 24


def _secret() -> str:
    if not settings.EMAIL_LINK_SECRET:
        raise RuntimeError("Missing EMAIL_LINK_SECRET")
    return settings.EMAIL_LINK_SECRET


def create_accept_token(lead_id, provider_id, expires_delta: timedelta = None) -> str:
    expire = system_clock.now() + (expires_delta or timedelta(hours=ACCEPT_TOKEN_EXPIRE_HOURS))
    payload = {"lead_id": str(lead_id), "provider_id": str(provider_id), "exp": expire}
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def verify_accept_token(token: str) -> dict:
    try:
        payload = jwt.decode(token or "", _secret(), algorithms=[ALGORITHM])
    except jwt.InvalidTokenError as e:
        raise InvalidTokenError(str(e)) from e

    if not payload.get("lead_id") or not payload.get("provider_id"):
        raise InvalidTokenError("Token is missing lead or provider")
    return payload


def accept_url(lead_id, provider_id) -> str:
    token = create_accept_token(lead_id, provider_id)
    return f"{settings.DOMAIN.rstrip('/')}/unlocks/accept?token={token}"
