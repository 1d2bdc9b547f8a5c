"""Route module discovery, ordering and mounting.

A route module is anything exposing ``router``, ``prefix`` and ``priority``.
Modules come from the ``route_modules`` manifest first and then from the
``.py`` files directly inside ``routes_path``. They are mounted by descending
priority; ties keep discovery order, and directory entries are discovered in
file name order.
"""

from __future__ import annotations

import importlib.util
import logging
import re
import sys
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any

from apiboot.bootstrap.builder import AppBuilder
from apiboot.config import StartupOptions
from apiboot.errors import RouteModuleLoadError

ROUTE_FILE_SUFFIX = ".py"
MODULE_NAME_PREFIX = "apiboot_routes"
SEPARATOR_RUN_RE = re.compile(r"/{2,}")

logger = logging.getLogger("apiboot.bootstrap")


def join_mount_path(api_prefix: str | None, prefix: str | None) -> str:
    return SEPARATOR_RUN_RE.sub("/", f"{api_prefix or '/'}{prefix or '/'}")


def _coerce_priority(value: Any, name: str | None) -> float:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RouteModuleLoadError(name or "<route module>", f"Route module {name} has a non-numeric priority: {value!r}")
    return value


@dataclass(frozen=True)
class RouteModule:
    name: str
    router: Any = None
    prefix: str = "/"
    priority: float = 0

    @property
    def mountable(self) -> bool:
        return self.router is not None

    @classmethod
    def from_object(cls, source: Any, *, name: str | None = None) -> "RouteModule":
        if isinstance(source, RouteModule):
            return source
        if isinstance(source, dict):
            getter = source.get
        else:
            def getter(key: str, default: Any = None) -> Any:
                return getattr(source, key, default)

        resolved_name = name or str(getter("name") or getattr(source, "__name__", None) or type(source).__name__)
        return cls(
            name=resolved_name,
            router=getter("router"),
            prefix=getter("prefix") or "/",
            priority=_coerce_priority(getter("priority"), resolved_name),
        )

    def mount(self, builder: AppBuilder, api_prefix: str | None) -> str | None:
        if not self.mountable:
            return None
        mount_path = join_mount_path(api_prefix, self.prefix)
        builder.mount(mount_path, self.router)
        return mount_path


def list_route_files(routes_path: Path) -> list[Path]:
    try:
        entries = sorted(routes_path.iterdir(), key=lambda entry: entry.name)
    except OSError as exc:
        raise RouteModuleLoadError(routes_path, f"Cannot list routes directory {routes_path}: {exc}") from exc
    return [
        entry
        for entry in entries
        if entry.is_file() and entry.name.endswith(ROUTE_FILE_SUFFIX) and not entry.name.startswith("__")
    ]


def import_route_file(path: Path) -> ModuleType:
    module_name = f"{MODULE_NAME_PREFIX}_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise RouteModuleLoadError(path, f"Cannot import route module {path}.")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        sys.modules.pop(module_name, None)
        raise RouteModuleLoadError(path, f"Failed to load route module {path}: {exc}") from exc
    return module


def discover_route_modules(
    routes_path: Path | None,
    manifest: Iterable[Any] | None = None,
) -> list[RouteModule]:
    modules = [RouteModule.from_object(entry) for entry in (manifest or [])]
    if routes_path is not None:
        for path in list_route_files(Path(routes_path)):
            modules.append(RouteModule.from_object(import_route_file(path), name=path.name))
    return modules


def sort_by_priority(modules: list[RouteModule]) -> list[RouteModule]:
    return sorted(modules, key=lambda module: module.priority, reverse=True)


def mount_route_modules(builder: AppBuilder, modules: Iterable[RouteModule], *, api_prefix: str | None) -> int:
    mounted = 0
    for module in modules:
        mount_path = module.mount(builder, api_prefix)
        if mount_path is None:
            logger.debug("Skipped route module without router.", extra={"route_module": module.name})
            continue
        logger.debug(
            "Mounted route module.",
            extra={"route_module": module.name, "mount_path": mount_path, "priority": module.priority},
        )
        mounted += 1
    return mounted


def register_file_routes(builder: AppBuilder, options: StartupOptions) -> int:
    modules = sort_by_priority(discover_route_modules(options.routes_path, options.route_modules))
    mounted = mount_route_modules(builder, modules, api_prefix=options.normalized_api_prefix)
    logger.info(f"Loaded {mounted} routers.", extra={"routers": mounted})
    return mounted
