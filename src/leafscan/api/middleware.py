"""Middleware: API key authentication."""

from __future__ import annotations

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from leafscan.api.deps import get_settings

_bearer_scheme = HTTPBearer(auto_error=False)
_header_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)


def _matches(candidate: str | None, expected: str) -> bool:
    if candidate is None:
        return False
    return secrets.compare_digest(candidate.encode(), expected.encode())


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    header_key: Annotated[str | None, Depends(_header_scheme)],
) -> None:
    """Check the request's key against the configured API key.

    If no API key is configured (LEAFSCAN_API_KEY not set), all requests pass.
    Otherwise the key is accepted from 'Authorization: Bearer <key>' or 'X-API-Key: <key>'.
    """
    api_key = get_settings(request).api_key
    if api_key is None:
        return

    bearer = credentials.credentials if credentials is not None else None
    if _matches(bearer, api_key) or _matches(header_key, api_key):
        return

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )
