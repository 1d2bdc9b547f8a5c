from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

OptionBag = dict[str, Any]


class StartupOptions(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    port: int | None = None
    host: str = "0.0.0.0"
    routes_path: Path | None = None
    api_prefix: str = "/"
    route_modules: list[Any] | None = None

    enable_response_time: bool = False
    response_time_options: OptionBag | None = None

    enable_log: bool = False
    log_format: str | None = None
    log_options: OptionBag | None = None

    enable_cors: bool = False
    cors_options: OptionBag | None = None

    url_parser_options: OptionBag | None = Field(
        default=None,
        validation_alias=AliasChoices("url_parser_options", "user_parser_options"),
    )
    json_parser_options: OptionBag | None = None

    enable_gzip: bool = False
    gzip_options: OptionBag | None = None

    enable_https: bool = False
    https_options: OptionBag | None = None

    enable_metrics: bool = False
    metrics_path: str = "/metrics"

    log_level: str = "INFO"
    log_json: bool = True

    on_routes_loading: Any = None
    on_routes_loaded: Any = None

    @property
    def normalized_api_prefix(self) -> str:
        value = (self.api_prefix or "").strip()
        return value or "/"
