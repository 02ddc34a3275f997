"""
Token handling utilities for the browser's bearer token.

When the platform's signing secret is configured, tokens are verified and
their subject keys the session so a refreshed token keeps the same state.
Without it, nothing in the token is trusted: the session is keyed by the
token itself and carries no roles.
"""
import hashlib
import time
from typing import Any, Dict, List, Optional

from jose import JWTError, jwt


def decode_token(token: str, secret: str, algorithm: str) -> Dict[str, Any]:
    """
    Verify a token's signature and return its claims.

    Expiry is not enforced here; sessions check it with a buffer.

    Raises:
        JWTError: if the token is malformed or signed with another key
    """
    return jwt.decode(
        token,
        secret,
        algorithms=[algorithm],
        options={"verify_exp": False, "verify_aud": False},
    )


def read_expiry(token: str) -> Optional[int]:
    """Unverified ``exp`` of a token, used only to end that token's own session early."""
    try:
        exp = jwt.get_unverified_claims(token).get("exp")
    except JWTError:
        return None
    return exp if isinstance(exp, int) else None


def token_key(token: str) -> str:
    return "token:" + hashlib.sha256(token.encode("utf-8")).hexdigest()


def session_key(token: str, verified_claims: Optional[Dict[str, Any]] = None) -> str:
    """Stable key for a user's session.

    Only verified claims may name the user; anything else is keyed by the
    token's hash.
    """
    for claim in ("sub", "user_id", "userId", "id"):
        if verified_claims and verified_claims.get(claim):
            return f"user:{verified_claims[claim]}"
    return token_key(token)


def roles_from_claims(claims: Dict[str, Any]) -> List[str]:
    roles = claims.get("roles")
    if isinstance(roles, list):
        return [str(r) for r in roles]
    role = claims.get("role")
    if isinstance(role, str) and role:
        return [role]
    return []


def is_token_expired(expires_at: int, buffer_seconds: int = 30) -> bool:
    """
    Check if a token is expired with a buffer time.

    Args:
        expires_at: Token expiration timestamp
        buffer_seconds: Buffer time in seconds before the actual expiration

    Returns:
        True if token is expired or will expire soon, False otherwise
    """
    current_time = int(time.time())
    return current_time >= (expires_at - buffer_seconds)
