"""Exact-match CORS origin allow-list.

Requests from origins that are not listed are still served; they simply do
not get ``Access-Control-Allow-Origin`` back, and the browser enforces the
restriction. ``*`` is not supported.
"""

from __future__ import annotations

from typing import Iterable

from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

ALLOWED_METHODS = "POST, GET, HEAD, PATCH, DELETE, OPTIONS"
ALLOWED_HEADERS = "Authorization, Origin, X-Requested-With, Content-Type, Upload-Length, Upload-Offset, Upload-Metadata"
EXPOSED_HEADERS = "Upload-Offset, Location, Upload-Length, Upload-Metadata"


class OriginAllowListMiddleware:
    def __init__(self, app: ASGIApp, allowed_origins: Iterable[str]) -> None:
        self.app = app
        self.allowed_origins = frozenset(allowed_origins)

    def _cors_headers(self, origin: str | None) -> dict[str, str]:
        if origin is not None and origin in self.allowed_origins:
            return {"Access-Control-Allow-Origin": origin}
        return {}

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_headers = Headers(scope=scope)
        origin = request_headers.get("origin")
        allow = self._cors_headers(origin)

        if scope["method"] == "OPTIONS" and request_headers.get("access-control-request-method"):
            headers = {
                **allow,
                "Access-Control-Allow-Methods": ALLOWED_METHODS,
                "Access-Control-Allow-Headers": ALLOWED_HEADERS,
                "Access-Control-Max-Age": "86400",
                "Vary": "Origin",
            }
            response = Response(status_code=204, headers=headers)
            await response(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                response_headers = MutableHeaders(scope=message)
                if "access-control-allow-origin" in response_headers:
                    del response_headers["access-control-allow-origin"]
                if allow:
                    response_headers["Access-Control-Allow-Origin"] = allow["Access-Control-Allow-Origin"]
                    response_headers["Access-Control-Expose-Headers"] = EXPOSED_HEADERS
                response_headers.add_vary_header("Origin")
            await send(message)

        await self.app(scope, receive, send_with_cors)
