"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from studyhub.auth.jwt import verify_token
from studyhub.auth.service import get_account_by_id
from studyhub.database import get_session
from studyhub.db.models import Account

_bearer = HTTPBearer()


async def get_current_account(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> Account:
    """
    Extract and verify the bearer JWT, return the Account.

    Raises 401 for bad tokens or unknown accounts, 403 for banned accounts.
    """
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    account = await get_account_by_id(db, int(payload["sub"]))
    if account is None:
        raise HTTPException(status_code=401, detail="Account not found")
    if account.is_banned:
        raise HTTPException(status_code=403, detail="Account is banned")
    return account
