from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from apiboot.errors import error_response


class TerminalErrorMiddleware:
    """Innermost layer: turns anything a route raises into a JSON 500.

    The error response still travels back out through every outer layer.
    """

    def __init__(self, app: ASGIApp, *, logger: logging.Logger | str = "apiboot.bootstrap") -> None:
        self.app = app
        self.logger = logging.getLogger(logger) if isinstance(logger, str) else logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            request = Request(scope)
            self.logger.exception(
                "unhandled_exception",
                extra={
                    "request_id": getattr(request.state, "request_id", None),
                    "method": request.method,
                    "path": request.url.path,
                },
            )
            if response_started:
                raise
            response = error_response(
                request,
                status_code=500,
                code="INTERNAL_ERROR",
                message="Internal Server Error",
            )
            await response(scope, receive, send)
