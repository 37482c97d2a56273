"""
Bearer-token authentication for the HTTP surface.

Tokens are listed in the ``api_tokens`` setting. With no tokens
configured every request to the Spond routes is rejected.
"""

import hmac
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from spond_sync.service import SpondService

_bearer = HTTPBearer(auto_error=False)


def get_service(request: Request) -> SpondService:
    return request.app.state.service


def require_token(
    service: SpondService = Depends(get_service),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> str:
    """Reject the request unless it carries one of the configured tokens."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    presented = credentials.credentials.encode()
    for token in service.settings.api_tokens:
        if hmac.compare_digest(presented, token.encode()):
            return credentials.credentials

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid bearer token",
        headers={"WWW-Authenticate": "Bearer"},
    )
