"""
RS256 verification of identity-provider session tokens.

The identity provider signs the tokens; this service only holds the public
key. The `sub` claim is the opaque user reference stored as
`accounts.external_id`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import jwt

from salesdojo.config import get_settings

_public_key: str | None = None


def _load_public_key() -> str:
    """Load the provider's public key from disk (cached after first call)."""
    global _public_key  # noqa: PLW0603
    if _public_key is None:
        settings = get_settings()
        _public_key = Path(settings.identity_public_key_path).read_text()
    return _public_key


def reset_keys() -> None:
    """Reset cached key (useful for testing)."""
    global _public_key  # noqa: PLW0603
    _public_key = None


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode an identity-provider JWT.

    Args:
        token: The encoded JWT string.

    Returns:
        Decoded payload dictionary.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or has no subject.
    """
    public_key = _load_public_key()
    settings = get_settings()
    options: dict[str, Any] = {"require": ["exp", "sub"]}
    if settings.identity_jwt_audience is None:
        options["verify_aud"] = False
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            public_key,
            algorithms=[settings.identity_jwt_algorithm],
            issuer=settings.identity_jwt_issuer,
            audience=settings.identity_jwt_audience,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if not payload.get("sub"):
        msg = "Token has no subject"
        raise jwt.InvalidTokenError(msg)

    return payload
