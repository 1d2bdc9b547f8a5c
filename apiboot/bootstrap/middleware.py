from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware

from apiboot.bootstrap.builder import AppBuilder
from apiboot.config import StartupOptions
from apiboot.middleware import (
    AccessLogMiddleware,
    JsonParserMiddleware,
    ResponseTimeMiddleware,
    UrlEncodedParserMiddleware,
    parse_size,
)
from apiboot.observability import register_metrics_route

DEFAULT_LOG_FORMAT = "combined"
DEFAULT_URL_PARSER_OPTIONS: dict[str, Any] = {"limit": "10mb", "extended": False}
DEFAULT_JSON_PARSER_OPTIONS: dict[str, Any] = {"limit": "10mb"}
DEFAULT_CORS_METHODS = ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"]
DEFAULT_GZIP_THRESHOLD = 1024
CORS_OPTION_NAMES = {
    "origin": "allow_origins",
    "origins": "allow_origins",
    "methods": "allow_methods",
    "allowed_headers": "allow_headers",
    "exposed_headers": "expose_headers",
    "credentials": "allow_credentials",
}
CORS_LIST_OPTIONS = {"allow_origins", "allow_methods", "allow_headers", "expose_headers"}

logger = logging.getLogger("apiboot.bootstrap")


def _parse_csv(value: Any) -> list[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item) for item in value]


def _bag_or_default(bag: Mapping[str, Any] | None, default: Mapping[str, Any]) -> Mapping[str, Any]:
    # A supplied bag replaces the defaults wholesale, even when empty.
    return default if bag is None else bag


def build_cors_kwargs(cors_options: Mapping[str, Any] | None) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "allow_origins": ["*"],
        "allow_methods": list(DEFAULT_CORS_METHODS),
        "allow_headers": ["*"],
    }
    for key, value in (cors_options or {}).items():
        name = CORS_OPTION_NAMES.get(key, key)
        if name == "allow_origins" and value is True:
            value = ["*"]
        elif name == "allow_origins" and value is False:
            # Disabled: no origin is allowed, so no CORS headers are sent.
            value = []
        if name in CORS_LIST_OPTIONS and value is not None:
            value = _parse_csv(value)
        kwargs[name] = value
    return kwargs


def build_gzip_kwargs(gzip_options: Mapping[str, Any] | None) -> dict[str, Any]:
    options = dict(gzip_options or {})
    kwargs: dict[str, Any] = {"minimum_size": parse_size(options.pop("threshold", DEFAULT_GZIP_THRESHOLD))}
    if "level" in options:
        kwargs["compresslevel"] = int(options.pop("level"))
    kwargs.update(options)
    return kwargs


def register_core_middleware(builder: AppBuilder, options: StartupOptions) -> None:
    if options.enable_response_time:
        builder.add_middleware(
            "response_time",
            ResponseTimeMiddleware,
            **{**dict(options.response_time_options or {}), "observe_metrics": options.enable_metrics},
        )
        logger.info("Enable response time.", extra={"feature": "response_time"})

    if options.enable_log:
        builder.add_middleware(
            "access_log",
            AccessLogMiddleware,
            **{**dict(options.log_options or {}), "log_format": options.log_format or DEFAULT_LOG_FORMAT},
        )
        logger.info("Enable access log.", extra={"feature": "access_log"})

    if options.enable_cors:
        builder.add_middleware("cors", CORSMiddleware, **build_cors_kwargs(options.cors_options))
        logger.info("Enable cors.", extra={"feature": "cors"})

    builder.add_middleware(
        "urlencoded_parser",
        UrlEncodedParserMiddleware,
        **dict(_bag_or_default(options.url_parser_options, DEFAULT_URL_PARSER_OPTIONS)),
    )
    builder.add_middleware(
        "json_parser",
        JsonParserMiddleware,
        **dict(_bag_or_default(options.json_parser_options, DEFAULT_JSON_PARSER_OPTIONS)),
    )

    if options.enable_gzip:
        builder.add_middleware("gzip", GZipMiddleware, **build_gzip_kwargs(options.gzip_options))
        logger.info("Enable gzip.", extra={"feature": "gzip"})

    if options.enable_metrics:
        register_metrics_route(builder.api, path=options.metrics_path)
        logger.info("Enable metrics.", extra={"feature": "metrics"})
