"""JWT verification for REST API authentication.

Accounts are managed by an external identity service; the game server
only verifies the bearer token it issued and reads the account id from
the ``sub`` claim.  ``create_token`` exists for that service's shared
secret setup and for tests.

Usage::

    from polis.network.jwt_auth import get_current_account

    @app.get("/api/worlds/{world_id}/movements")
    async def movements(world_id: str, account_id: str = Depends(get_current_account)):
        ...
"""

from __future__ import annotations

import logging
import os
import time
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

log = logging.getLogger(__name__)

# Secret key — read from env or use a default (fine for a local server)
JWT_SECRET: str = os.environ.get("POLIS_JWT_SECRET", "polis-dev-secret-change-in-prod")
JWT_ALGORITHM: str = "HS256"
JWT_EXPIRY_SECONDS: int = 86400  # 24 hours

_bearer_scheme = HTTPBearer(auto_error=False)


def create_token(account_id: str, expires_in: int = JWT_EXPIRY_SECONDS) -> str:
    """Create a signed JWT for *account_id*."""
    now = int(time.time())
    payload = {
        "sub": account_id,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> str:
    """Verify a JWT and return the account id.

    Raises:
        ValueError: If the token is invalid, expired or has no subject.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise ValueError("Token expired")
    except jwt.InvalidTokenError as e:
        raise ValueError(f"Invalid token: {e}")
    account_id = payload.get("sub")
    if not account_id:
        raise ValueError("Token missing sub claim")
    return str(account_id)


async def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> str:
    """FastAPI dependency returning the authenticated account id.

    Raises:
        HTTPException(401): If the token is missing, invalid, or expired.
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authorization header required")
    try:
        return verify_token(credentials.credentials)
    except ValueError as e:
        log.info("Rejected token: %s", e)
        raise HTTPException(status_code=401, detail=str(e))
