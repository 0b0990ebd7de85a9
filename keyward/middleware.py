"""
Starlette middleware that puts a Guard in front of a FastAPI app.

    app.add_middleware(
        ApiKeyMiddleware,
        guard=services.guard,
        exclude_paths=["/health", "/public/*"],
        resource="music",
    )

The authenticated Identity is stored on ``request.state.identity``. Refusals
come back as JSON ``{"error": ..., "code": ...}`` with the mapped status.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from keyward.errors import KeywardError, error_status
from keyward.guard import Guard, RequestContext
from keyward.models import PermissionLevel

logger = logging.getLogger(__name__)


def path_excluded(path: str, exclude_paths: Sequence[str]) -> bool:
    """Exact match, or prefix match for entries ending in ``*``."""
    for pattern in exclude_paths:
        if pattern.endswith("*"):
            if path.startswith(pattern[:-1]):
                return True
        elif path == pattern:
            return True
    return False


async def _read_body(request: Request):
    if request.method in ("GET", "HEAD"):
        return None
    raw = await request.body()
    if not raw:
        return None
    if "application/json" in request.headers.get("content-type", ""):
        try:
            return json.loads(raw)
        except ValueError:
            return raw.decode("utf-8", errors="replace")
    return raw.decode("utf-8", errors="replace")


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """Authenticate every request (and optionally authorize it) through a Guard."""

    def __init__(
        self,
        app: ASGIApp,
        guard: Guard,
        exclude_paths: Sequence[str] = (),
        required_level: PermissionLevel = PermissionLevel.STANDARD,
        validate_signature: bool | None = None,
        required: bool = True,
        resource: str | None = None,
    ):
        super().__init__(app)
        self.guard = guard
        self.exclude_paths = tuple(exclude_paths)
        self.required_level = required_level
        self.validate_signature = validate_signature
        self.required = required
        self.resource = resource

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if path_excluded(request.url.path, self.exclude_paths):
            return await call_next(request)

        ctx = RequestContext(
            method=request.method,
            path=request.url.path,
            headers=dict(request.headers),
            query=dict(request.query_params),
            client_ip=request.client.host if request.client else None,
        )

        try:
            if self.validate_signature or (
                self.validate_signature is None and self.guard.signature_required
            ):
                ctx.body = await _read_body(request)
            # Storage lookups block, so keep them off the event loop
            identity = await run_in_threadpool(
                self.guard.validate_credential,
                ctx,
                required_level=self.required_level,
                validate_signature=self.validate_signature,
                required=self.required,
            )
            if self.resource:
                await run_in_threadpool(self.guard.check_http_permission, ctx, self.resource)
        except KeywardError as e:
            return JSONResponse(
                status_code=error_status(e),
                content={"error": e.message, "code": e.code},
            )

        request.state.identity = identity
        return await call_next(request)
