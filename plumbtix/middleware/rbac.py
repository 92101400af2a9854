"""Attach the authenticated user to every request."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from plumbtix.dependencies.auth import resolve_user_from_token

logger = logging.getLogger(__name__)


class RBACMiddleware(BaseHTTPMiddleware):
    """Resolve the bearer token once; anonymous requests carry ``user = None``."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
        if scheme and scheme.lower() != "bearer":
            return JSONResponse(status_code=401, content={"detail": "Invalid authentication credentials"})

        try:
            request.state.user = resolve_user_from_token(credentials.strip() or None)
        except HTTPException as exc:
            logger.info("Rejected request to %s: %s", request.url.path, exc.detail)
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

        return await call_next(request)
