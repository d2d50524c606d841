"""
Token Verification

Access tokens are minted by the external auth service and verified here
with the shared HS256 key, issuer and audience. ``create_access_token``
mints the same shape for development tooling and tests.
"""

import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import jwt
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from notathome.config import get_settings

logger = logging.getLogger(__name__)


class TokenClaims(BaseModel):
    """Identity claims carried by an access token."""

    model_config = ConfigDict(extra="ignore")

    sub: UUID
    email: str = ""
    name: str = ""
    role: str = "publisher"
    congregation_id: UUID | None = None

    @field_validator("congregation_id", mode="before")
    @classmethod
    def empty_congregation_is_none(cls, value: Any) -> Any:
        return value or None


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """
    Mint an access token carrying ``data`` as claims.

    Args:
        data: Claims such as sub, email, role, congregation_id
        expires_delta: Lifetime; defaults to access_token_expire_minutes
    """
    settings = get_settings()
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {
        **data,
        "type": "access",
        "exp": datetime.now(UTC) + lifetime,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str, expected_type: str | None = None) -> dict[str, Any] | None:
    """
    Verify signature, expiry, issuer and audience.

    Returns:
        The payload, or None when any check fails or ``type`` differs from
        ``expected_type``
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )
    except jwt.InvalidTokenError as e:
        logger.debug(f"Rejected token: {e}")
        return None

    if expected_type is not None and payload.get("type") != expected_type:
        return None
    return payload


def read_access_token(token: str) -> TokenClaims | None:
    """Verified identity claims of an access token, or None."""
    payload = decode_token(token, expected_type="access")
    if payload is None:
        return None
    try:
        return TokenClaims.model_validate(payload)
    except ValidationError as e:
        logger.debug(f"Rejected token with malformed claims: {e.error_count()} error(s)")
        return None


def verify_api_key(provided: str | None, expected: str | None) -> bool:
    """Constant-time key check; always False while no key is configured."""
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())
