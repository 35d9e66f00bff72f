"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from salesdojo.accounts.service import get_or_create_account
from salesdojo.auth.jwt import verify_token
from salesdojo.database import get_session
from salesdojo.db.models import Account

_bearer = HTTPBearer()
_optional_bearer = HTTPBearer(auto_error=False)


async def _account_from_credentials(credentials: HTTPAuthorizationCredentials, db: AsyncSession) -> Account:
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    account, _ = await get_or_create_account(
        db,
        external_id=str(payload["sub"]),
        email=payload.get("email"),
        display_name=payload.get("name"),
    )
    return account


async def get_current_account(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> Account:
    """
    Verify the identity-provider JWT and return the caller's Account.

    Creates the account with signup defaults on first sight. Raises 401 on an
    invalid token.
    """
    return await _account_from_credentials(credentials, db)


async def get_optional_account(
    credentials: HTTPAuthorizationCredentials | None = Security(_optional_bearer),
    db: AsyncSession = Depends(get_session),
) -> Account | None:
    """Like get_current_account, but None when no bearer token is sent (unload beacons)."""
    if credentials is None:
        return None
    return await _account_from_credentials(credentials, db)
