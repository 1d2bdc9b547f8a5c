from __future__ import annotations

import logging
import re
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

PREDEFINED_FORMATS = {
    "combined": (
        ':remote-addr - :remote-user [:date[clf]] ":method :url HTTP/:http-version" '
        ':status :res[content-length] ":referrer" ":user-agent"'
    ),
    "common": ':remote-addr - :remote-user [:date[clf]] ":method :url HTTP/:http-version" :status :res[content-length]',
    "dev": ":method :url :status :response-time ms - :res[content-length]",
    "short": ":remote-addr :remote-user :method :url HTTP/:http-version :status :res[content-length] - :response-time ms",
    "tiny": ":method :url :status :res[content-length] - :response-time ms",
}
DEFAULT_LOGGER_NAME = "apiboot.access"
TOKEN_RE = re.compile(r":([-\w]{2,})(?:\[([^\]]+)\])?")
MISSING = "-"

SkipCallback = Callable[[Request, int | None], bool]


def _format_date(now: datetime, style: str | None) -> str:
    if style == "iso":
        return now.isoformat().replace("+00:00", "Z")
    if style == "web":
        return format_datetime(now, usegmt=True)
    return now.strftime("%d/%b/%Y:%H:%M:%S +0000")


def _url(request: Request) -> str:
    path = request.scope.get("raw_path")
    url = path.decode("latin-1") if isinstance(path, bytes) else request.url.path
    query = request.url.query
    if query and "?" not in url:
        url = f"{url}?{query}"
    return url


def render_access_line(
    log_format: str,
    request: Request,
    *,
    status_code: int | None,
    response_headers: Any = None,
    elapsed_seconds: float | None,
    now: datetime | None = None,
) -> str:
    template = PREDEFINED_FORMATS.get(log_format, log_format)
    timestamp = now or datetime.now(timezone.utc)

    def _token(match: re.Match[str]) -> str:
        name, argument = match.group(1), match.group(2)
        value: Any = None
        if name == "remote-addr":
            value = request.client.host if request.client else None
        elif name == "remote-user":
            value = None
        elif name == "date":
            value = _format_date(timestamp, argument)
        elif name == "method":
            value = request.method
        elif name == "url":
            value = _url(request)
        elif name == "http-version":
            value = request.scope.get("http_version")
        elif name == "status":
            value = status_code
        elif name == "res" and argument:
            value = response_headers.get(argument.lower()) if response_headers is not None else None
        elif name == "req" and argument:
            value = request.headers.get(argument.lower())
        elif name in {"referrer", "referer"}:
            value = request.headers.get("referer") or request.headers.get("referrer")
        elif name == "user-agent":
            value = request.headers.get("user-agent")
        elif name == "response-time" and elapsed_seconds is not None:
            value = f"{elapsed_seconds * 1000:.3f}"
        else:
            return match.group(0)
        return MISSING if value in (None, "") else str(value)

    return TOKEN_RE.sub(_token, template)


class AccessLogMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        *,
        log_format: str = "combined",
        skip: SkipCallback | None = None,
        immediate: bool = False,
        logger: str | logging.Logger = DEFAULT_LOGGER_NAME,
    ) -> None:
        super().__init__(app)
        self.log_format = log_format
        self.skip = skip if callable(skip) else None
        self.immediate = bool(immediate)
        self.logger = logger if isinstance(logger, logging.Logger) else logging.getLogger(logger)

    def _emit(self, request: Request, *, status_code: int | None, response: Response | None, elapsed: float | None) -> None:
        if self.skip is not None and self.skip(request, status_code):
            return
        line = render_access_line(
            self.log_format,
            request,
            status_code=status_code,
            response_headers=response.headers if response is not None else None,
            elapsed_seconds=elapsed,
        )
        self.logger.info(
            line,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round(elapsed * 1000, 2) if elapsed is not None else None,
                "client_ip": request.client.host if request.client else None,
            },
        )

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if self.immediate:
            self._emit(request, status_code=None, response=None, elapsed=None)
            return await call_next(request)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._emit(request, status_code=500, response=None, elapsed=time.perf_counter() - started)
            raise
        self._emit(request, status_code=response.status_code, response=response, elapsed=time.perf_counter() - started)
        return response
