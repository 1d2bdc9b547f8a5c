import asyncio
import logging
from collections.abc import Awaitable

from fastapi import FastAPI

from apiboot.bootstrap import (
    AppBuilder,
    RouteModule,
    install_terminal_error_handler,
    register_core_middleware,
    register_file_routes,
    run_routes_loaded_hook,
    run_routes_loading_hook,
    validate_startup_options,
)
from apiboot.bootstrap.contracts import StartupOptionsInput
from apiboot.bootstrap.validation import coerce_startup_options
from apiboot.config import StartupOptions
from apiboot.errors import InvalidConfiguration, RouteModuleLoadError, ServerStartError, StartupError, http_error
from apiboot.logging_config import configure_logging
from apiboot.server import ServerHandle, run_server
from apiboot.version import APP_VERSION

logger = logging.getLogger("apiboot.bootstrap")


def build_app(options: StartupOptionsInput) -> tuple[FastAPI, AppBuilder]:
    startup_options = coerce_startup_options(options)
    if startup_options is not None:
        configure_logging(level=startup_options.log_level, json_logs=startup_options.log_json)

    validate_startup_options(startup_options)
    assert startup_options is not None

    builder = AppBuilder()
    builder.api.state.startup_options = startup_options
    register_core_middleware(builder, startup_options)
    run_routes_loading_hook(builder.api, startup_options)
    register_file_routes(builder, startup_options)
    run_routes_loaded_hook(builder.api, startup_options)
    install_terminal_error_handler(builder, logger=logger)
    return builder.build(), builder


def start_server(options: StartupOptionsInput) -> Awaitable[ServerHandle]:
    """Wire the application and return an awaitable that starts listening.

    Configuration and route loading errors are raised right here, before any
    socket is bound. Bind failures surface when the returned awaitable is
    awaited, as ``ServerStartError``.
    """
    api, _builder = build_app(options)
    startup_options: StartupOptions = api.state.startup_options
    return run_server(startup_options, api)


async def _serve_until_closed(options: StartupOptionsInput) -> None:
    handle = await start_server(options)
    await handle.wait_closed()


def serve(options: StartupOptionsInput) -> None:
    asyncio.run(_serve_until_closed(options))


__all__ = [
    "APP_VERSION",
    "AppBuilder",
    "InvalidConfiguration",
    "RouteModule",
    "RouteModuleLoadError",
    "ServerHandle",
    "ServerStartError",
    "StartupError",
    "StartupOptions",
    "build_app",
    "http_error",
    "serve",
    "start_server",
]
