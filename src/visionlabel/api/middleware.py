"""Request guard for the classification API.

When VISIONLABEL_API_KEY is set, every /api/v1 route (classification,
health, labels) requires ``Authorization: Bearer <key>``. Unset, the API is
open.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from visionlabel.config import Settings

_bearer = HTTPBearer(auto_error=False)


def _configured_key(request: Request) -> str | None:
    settings: Settings = request.app.state.settings
    return settings.api_key


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
) -> None:
    """Router dependency: compare the bearer token with the configured key."""
    expected = _configured_key(request)
    if expected is None:
        return
    if credentials is None:
        raise _unauthorized()
    if not secrets.compare_digest(credentials.credentials.encode(), expected.encode()):
        raise _unauthorized()
