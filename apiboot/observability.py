from __future__ import annotations

import asyncio
import logging
import sys
import threading
from types import TracebackType
from typing import Any

from fastapi import FastAPI, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQUEST_COUNT = Counter(
    "apiboot_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)
REQUEST_LATENCY = Histogram(
    "apiboot_http_request_duration_seconds",
    "HTTP request latency (seconds)",
    ["method", "path"],
)
ALLOWED_HTTP_METHOD_LABELS = {"GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"}
MAX_PATH_LABEL_LENGTH = 96

uncaught_logger = logging.getLogger("apiboot.uncaught")


def metric_method_label(method: str | None) -> str:
    normalized = (method or "").upper()
    if normalized in ALLOWED_HTTP_METHOD_LABELS:
        return normalized
    return "OTHER"


def metric_path_label(request: Request) -> str:
    route = request.scope.get("route")
    route_path = getattr(route, "path", None)
    if not route_path:
        return "/_unmatched"
    path = str(route_path)
    if len(path) > MAX_PATH_LABEL_LENGTH:
        return "/_label_too_long"
    return path


def metric_status_label(status_code: int) -> str:
    if 100 <= int(status_code) <= 599:
        return str(int(status_code))
    return "000"


def observe_request_metrics(request: Request, *, status_code: int, elapsed_seconds: float) -> None:
    method_label = metric_method_label(request.method)
    path_label = metric_path_label(request)
    REQUEST_COUNT.labels(method_label, path_label, metric_status_label(status_code)).inc()
    REQUEST_LATENCY.labels(method_label, path_label).observe(elapsed_seconds)


def register_metrics_route(api: FastAPI, *, path: str = "/metrics") -> None:
    @api.get(path, tags=["system"], include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def _log_uncaught(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType | None,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    uncaught_logger.error("uncaught_exception", exc_info=(exc_type, exc_value, exc_traceback))


def _log_uncaught_thread(args: threading.ExceptHookArgs) -> None:
    if args.exc_value is None:
        return
    _log_uncaught(args.exc_type, args.exc_value, args.exc_traceback)


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exc = context.get("exception")
    message = context.get("message") or "unhandled_event_loop_exception"
    if isinstance(exc, BaseException):
        uncaught_logger.error(message, exc_info=(type(exc), exc, exc.__traceback__))
    else:
        uncaught_logger.error(message)


def install_uncaught_exception_logging(loop: asyncio.AbstractEventLoop | None = None) -> None:
    """Route anything that escapes every request boundary to a log line.

    Request errors are already turned into responses by the exception handlers;
    this only records what is left. Nothing is retried or recovered here.
    """
    sys.excepthook = _log_uncaught
    threading.excepthook = _log_uncaught_thread
    if loop is not None:
        loop.set_exception_handler(_log_loop_exception)
