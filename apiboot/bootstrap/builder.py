from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fastapi import APIRouter, FastAPI

from apiboot.errors import InvalidConfiguration
from apiboot.version import APP_VERSION


@dataclass(frozen=True)
class MiddlewareEntry:
    name: str
    middleware_class: type
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MountedRouter:
    path: str
    router: Any


def to_router_prefix(mount_path: str) -> str:
    """FastAPI wants "" for the root and no trailing slash elsewhere."""
    return mount_path.rstrip("/")


class AppBuilder:
    """Accumulates middleware and routers until the application is built.

    Middleware runs in insertion order: the first entry added is the outermost
    layer and sees the request first and the response last.
    """

    def __init__(self, api: FastAPI | None = None) -> None:
        self.api = api if api is not None else FastAPI(title="apiboot", version=APP_VERSION)
        self.middleware: list[MiddlewareEntry] = []
        self.mounts: list[MountedRouter] = []
        self.error_handler_installed = False
        self._built = False

    @property
    def built(self) -> bool:
        return self._built

    @property
    def middleware_names(self) -> list[str]:
        return [entry.name for entry in self.middleware]

    def _ensure_open(self) -> None:
        if self._built:
            raise RuntimeError("Application is already built; no further middleware or routers can be added.")

    def add_middleware(self, name: str, middleware_class: type, **options: Any) -> None:
        self._ensure_open()
        if self.error_handler_installed:
            raise RuntimeError("The terminal error handler is installed; it must stay the innermost middleware.")
        self.middleware.append(MiddlewareEntry(name=name, middleware_class=middleware_class, options=options))

    def mount(self, mount_path: str, router: Any) -> None:
        self._ensure_open()
        if isinstance(router, APIRouter):
            self.api.include_router(router, prefix=to_router_prefix(mount_path))
        else:
            self.api.mount(to_router_prefix(mount_path), router)
        self.mounts.append(MountedRouter(path=mount_path, router=router))

    def mark_error_handler_installed(self) -> None:
        self._ensure_open()
        self.error_handler_installed = True

    def build(self) -> FastAPI:
        self._ensure_open()
        # Starlette prepends on every add_middleware call, so add in reverse.
        for entry in reversed(self.middleware):
            self.api.add_middleware(entry.middleware_class, **entry.options)
        # Instantiate every layer now so bad middleware options fail at startup.
        try:
            self.api.middleware_stack = self.api.build_middleware_stack()
        except (TypeError, ValueError) as exc:
            raise InvalidConfiguration(f"Invalid middleware options: {exc}") from exc
        self._built = True
        return self.api
