"""Signed WebSocket tokens — creation and verification.

Learn: the token is a base64 string wrapping four colon-separated fields:

    tenant_id:user_id:issued_at:signature

where signature = hex(HMAC-SHA256(secret, "tenant_id|user_id|issued_at")).
A token is valid for a fixed window (300s by default) after issued_at.
Tokens dated in the future are rejected too, so a skewed or tampered
clock value can't stretch the window.
"""

import base64
import binascii
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Optional

from votecast.config import settings


class TokenError(Exception):
    """Raised when token verification fails.

    The message is for server logs only. Clients always get the same
    generic error so they can't tell which check failed.
    """


@dataclass(frozen=True)
class TokenClaims:
    """Identity proven by a verified token."""

    tenant_id: str
    user_id: Optional[str]
    issued_at: int


def sign(tenant_id: str, user_id: str, issued_at: int, secret: str) -> str:
    """Compute the hex HMAC-SHA256 signature for a token's fields."""
    message = f"{tenant_id}|{user_id}|{issued_at}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def issue_token(
    tenant_id: str,
    user_id: str = "",
    issued_at: Optional[int] = None,
    secret: Optional[str] = None,
) -> str:
    """Create a token for a tenant/user pair.

    Called by the trusted request-handling side, which then hands the token
    to the browser (e.g. embedded in an authenticated page).
    """
    if issued_at is None:
        issued_at = int(time.time())
    secret = settings.app_secret if secret is None else secret
    signature = sign(tenant_id, user_id, issued_at, secret)
    raw = f"{tenant_id}:{user_id}:{issued_at}:{signature}"
    return base64.b64encode(raw.encode()).decode()


def verify_token(
    token: str,
    tenant_id: str,
    now: Optional[float] = None,
    secret: Optional[str] = None,
    ttl: Optional[int] = None,
) -> TokenClaims:
    """Verify a token presented together with a tenant id.

    Returns the claims on success. Raises TokenError on failure.
    """
    secret = settings.app_secret if secret is None else secret
    ttl = settings.token_ttl_seconds if ttl is None else ttl

    try:
        decoded = base64.b64decode(token, validate=True).decode()
    except (binascii.Error, ValueError):
        raise TokenError("Invalid token encoding") from None

    parts = decoded.split(":")
    if len(parts) != 4:
        raise TokenError(f"Malformed token: expected 4 fields, got {len(parts)}")
    token_tenant, token_user, token_ts, token_sig = parts

    # A token issued for one tenant must not open another tenant's rooms
    if not hmac.compare_digest(token_tenant.encode(), tenant_id.encode()):
        raise TokenError("Tenant mismatch")

    try:
        issued_at = int(token_ts)
    except ValueError:
        raise TokenError("Invalid issued_at") from None

    age = (time.time() if now is None else now) - issued_at
    if age < 0:
        raise TokenError("Token issued in the future")
    if age > ttl:
        raise TokenError("Token expired")

    expected = sign(token_tenant, token_user, issued_at, secret)
    if not hmac.compare_digest(expected.encode(), token_sig.encode()):
        raise TokenError("Invalid signature")

    return TokenClaims(
        tenant_id=token_tenant,
        user_id=token_user or None,
        issued_at=issued_at,
    )
