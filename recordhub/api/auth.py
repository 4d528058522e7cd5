"""Bearer-token guard for the RecordHub routes.

``RECORDHUB_API_TOKEN`` turns the guard on. Left empty, every request is let
through, which is how the service runs on a local machine.
"""

from __future__ import annotations

import secrets

from fastapi import Depends, Header, HTTPException, Request

BEARER_PREFIX = "Bearer "


def _presented_token(authorization: str = Header(default="")) -> str:
    """Token the caller sent, or an empty string when none was sent."""
    if authorization.startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX):]
    return ""


async def require_api_auth(request: Request, token: str = Depends(_presented_token)) -> str:
    """Reject record and augmentation calls that do not carry the service token."""
    expected = request.app.state.settings.api.api_token
    if not expected:
        return ""
    if not secrets.compare_digest(token, expected):
        raise HTTPException(status_code=401, detail="Invalid or missing API token")
    return token
