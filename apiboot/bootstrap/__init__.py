from apiboot.bootstrap.builder import AppBuilder
from apiboot.bootstrap.exception_handlers import install_terminal_error_handler, register_exception_handlers
from apiboot.bootstrap.hooks import run_routes_loaded_hook, run_routes_loading_hook
from apiboot.bootstrap.middleware import register_core_middleware
from apiboot.bootstrap.routes import RouteModule, register_file_routes
from apiboot.bootstrap.validation import validate_startup_options

__all__ = [
    "AppBuilder",
    "RouteModule",
    "install_terminal_error_handler",
    "register_core_middleware",
    "register_exception_handlers",
    "register_file_routes",
    "run_routes_loaded_hook",
    "run_routes_loading_hook",
    "validate_startup_options",
]
