"""Bearer token checks for the protected endpoints."""

import secrets
from typing import Optional

from fastapi import HTTPException, Request

from download_server.config import Settings


def _token_matches(header: Optional[str], token: str) -> bool:
    if not header:
        return False
    return secrets.compare_digest(header.encode(), f"Bearer {token}".encode())


def is_authorized(request: Request, settings: Settings) -> bool:
    """Endpoints that always require a token deny access when none is configured."""
    if not settings.auth_token:
        return False
    return _token_matches(request.headers.get("Authorization"), settings.auth_token)


def require_token(request: Request, settings: Settings) -> None:
    if not is_authorized(request, settings):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_token_if_configured(request: Request, settings: Settings) -> None:
    """Open by configuration: with no token set, anyone may call."""
    if not settings.auth_token:
        return
    require_token(request, settings)
