from pathlib import Path
from typing import Any
import socket

import pytest

from apiboot.config import StartupOptions
from apiboot.logging_config import configure_logging

ROUTE_MODULE_TEMPLATE = '''\
from fastapi import APIRouter

router = APIRouter()
prefix = {prefix!r}
priority = {priority!r}


@router.get("/whoami")
async def whoami():
    return {{"module": {name!r}}}
'''

TRACED_ROUTE_MODULE_TEMPLATE = '''\
import apiboot_trace
from fastapi import APIRouter

apiboot_trace.events.append("import:{name}")

router = APIRouter()
prefix = {prefix!r}
priority = {priority!r}


@router.get("/whoami")
async def whoami():
    return {{"module": {name!r}}}
'''


def pytest_configure(config):
    config.addinivalue_line("markers", "network: starts a real server on a local port")


@pytest.fixture(scope="session", autouse=True)
def _configure_test_logging():
    configure_logging(level="WARNING", json_logs=False)


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def build_test_options(**overrides: Any) -> StartupOptions:
    defaults: dict[str, Any] = {
        "port": 8080,
        "host": "127.0.0.1",
        "log_level": "WARNING",
        "log_json": False,
    }
    defaults.update(overrides)
    return StartupOptions(**defaults)


def write_route_module(
    directory: Path,
    name: str,
    *,
    prefix: str = "/",
    priority: float = 0,
    traced: bool = False,
) -> Path:
    template = TRACED_ROUTE_MODULE_TEMPLATE if traced else ROUTE_MODULE_TEMPLATE
    path = directory / f"{name}.py"
    path.write_text(template.format(name=name, prefix=prefix, priority=priority), encoding="utf-8")
    return path


@pytest.fixture
def routes_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "routes"
    directory.mkdir()
    return directory
