from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from apiboot.bootstrap.contracts import RoutesHook
from apiboot.config import StartupOptions


def _invoke_hook(hook: RoutesHook | Any, api: FastAPI) -> bool:
    if not callable(hook):
        return False
    hook(api)
    return True


def run_routes_loading_hook(api: FastAPI, options: StartupOptions) -> bool:
    return _invoke_hook(options.on_routes_loading, api)


def run_routes_loaded_hook(api: FastAPI, options: StartupOptions) -> bool:
    return _invoke_hook(options.on_routes_loaded, api)
