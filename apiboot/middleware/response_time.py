from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from apiboot.observability import observe_request_metrics

DEFAULT_HEADER = "X-Response-Time"


def format_response_time(elapsed_seconds: float, *, digits: int = 3, suffix: bool = True) -> str:
    value = f"{elapsed_seconds * 1000:.{max(0, int(digits))}f}"
    return f"{value}ms" if suffix else value


class ResponseTimeMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        *,
        digits: int = 3,
        header: str = DEFAULT_HEADER,
        suffix: bool = True,
        observe_metrics: bool = False,
    ) -> None:
        super().__init__(app)
        self.digits = digits
        self.header = header
        self.suffix = suffix
        self.observe_metrics = observe_metrics

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            if self.observe_metrics:
                observe_request_metrics(request, status_code=500, elapsed_seconds=time.perf_counter() - started)
            raise

        elapsed = time.perf_counter() - started
        if self.header not in response.headers:
            response.headers[self.header] = format_response_time(elapsed, digits=self.digits, suffix=self.suffix)
        if self.observe_metrics:
            observe_request_metrics(request, status_code=response.status_code, elapsed_seconds=elapsed)
        return response
