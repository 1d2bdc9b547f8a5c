from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from apiboot.bootstrap.contracts import StartupOptionsInput
from apiboot.config import StartupOptions
from apiboot.errors import InvalidConfiguration

PORT_MIN = 1
PORT_MAX = 65535
OPTION_BAG_FIELDS = (
    "response_time_options",
    "log_options",
    "cors_options",
    "url_parser_options",
    "json_parser_options",
    "gzip_options",
    "https_options",
)


def coerce_startup_options(value: StartupOptionsInput) -> StartupOptions | None:
    if value is None or isinstance(value, StartupOptions):
        return value
    if not isinstance(value, Mapping):
        raise InvalidConfiguration(f"Startup options must be a mapping or StartupOptions, got {type(value).__name__}.")
    try:
        return StartupOptions(**dict(value))
    except ValidationError as exc:
        raise InvalidConfiguration(f"Invalid startup options: {exc}") from exc


def _coerce_port(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def validate_startup_options(options: StartupOptions | None) -> None:
    if options is None:
        raise InvalidConfiguration("Startup options are required.")

    port = _coerce_port(options.port)
    if port is None or port < PORT_MIN or port > PORT_MAX:
        raise InvalidConfiguration(f"port must be a valid port number [{PORT_MIN}-{PORT_MAX}], got {options.port!r}.")

    if not options.routes_path or not Path(options.routes_path).exists():
        raise InvalidConfiguration(f"routes_path must point to an existing directory, got {options.routes_path!r}.")

    if not options.normalized_api_prefix.startswith("/"):
        raise InvalidConfiguration(f"api_prefix must start with '/', got {options.api_prefix!r}.")

    for field_name in OPTION_BAG_FIELDS:
        bag = getattr(options, field_name)
        if bag is not None and not isinstance(bag, Mapping):
            raise InvalidConfiguration(f"{field_name} must be a mapping.")

    if options.enable_https and options.https_options is not None:
        missing = [key for key in ("keyfile", "certfile") if not options.https_options.get(key)]
        if missing:
            raise InvalidConfiguration(f"https_options must define {', '.join(missing)}.")

    if options.enable_metrics and not options.enable_response_time:
        raise InvalidConfiguration("enable_metrics requires enable_response_time (request timings feed the metrics).")
    if options.enable_metrics and not options.metrics_path.startswith("/"):
        raise InvalidConfiguration(f"metrics_path must start with '/', got {options.metrics_path!r}.")
