from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI

from apiboot.config import StartupOptions
from apiboot.errors import ServerStartError
from apiboot.observability import install_uncaught_exception_logging

KEYS_DIR = Path(__file__).resolve().parent / "keys"
DEFAULT_KEYFILE = KEYS_DIR / "key.pem"
DEFAULT_CERTFILE = KEYS_DIR / "cert.pem"
STARTUP_POLL_INTERVAL_SECONDS = 0.01

logger = logging.getLogger("apiboot.server")


@dataclass
class ServerHandle:
    api: FastAPI
    server: uvicorn.Server
    task: asyncio.Task[Any]
    host: str
    port: int
    is_https: bool

    @property
    def scheme(self) -> str:
        return "https" if self.is_https else "http"

    @property
    def url(self) -> str:
        host = "127.0.0.1" if self.host in {"0.0.0.0", ""} else self.host
        if ":" in host:
            host = f"[{host}]"
        return f"{self.scheme}://{host}:{self.port}"

    @property
    def is_serving(self) -> bool:
        return self.server.started and not self.task.done()

    async def wait_closed(self) -> None:
        await asyncio.shield(self.task)

    async def close(self) -> None:
        self.server.should_exit = True
        await self.wait_closed()


def resolve_tls_material(options: StartupOptions) -> dict[str, Any]:
    https_options = dict(options.https_options or {})
    keyfile = Path(https_options.get("keyfile") or DEFAULT_KEYFILE)
    certfile = Path(https_options.get("certfile") or DEFAULT_CERTFILE)
    for path in (keyfile, certfile):
        if not path.is_file():
            raise ServerStartError(f"TLS material not found: {path}")
    material: dict[str, Any] = {"ssl_keyfile": str(keyfile), "ssl_certfile": str(certfile)}
    if https_options.get("password"):
        material["ssl_keyfile_password"] = str(https_options["password"])
    if https_options.get("ca_certs"):
        material["ssl_ca_certs"] = str(https_options["ca_certs"])
    return material


def bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


def build_uvicorn_config(options: StartupOptions, api: FastAPI) -> uvicorn.Config:
    tls = resolve_tls_material(options) if options.enable_https else {}
    config = uvicorn.Config(
        api,
        host=options.host,
        port=int(options.port or 0),
        log_config=None,
        access_log=False,
        **tls,
    )
    try:
        config.load()
    except Exception as exc:
        raise ServerStartError(f"Invalid server configuration: {exc}", original=exc) from exc
    return config


async def run_server(options: StartupOptions, api: FastAPI) -> ServerHandle:
    config = build_uvicorn_config(options, api)
    port = int(options.port or 0)
    try:
        sock = bind_socket(options.host, port)
    except OSError as exc:
        logger.error("Server failed to bind.", extra={"host": options.host, "port": port})
        raise ServerStartError(f"Cannot listen on {options.host}:{port}: {exc}", original=exc) from exc

    install_uncaught_exception_logging(asyncio.get_running_loop())
    server = uvicorn.Server(config)
    task = asyncio.create_task(server.serve(sockets=[sock]))
    while not server.started:
        if task.done():
            sock.close()
            original = None if task.cancelled() else task.exception()
            raise ServerStartError(f"Server on {options.host}:{port} stopped during startup.", original=original) from original
        await asyncio.sleep(STARTUP_POLL_INTERVAL_SECONDS)

    handle = ServerHandle(
        api=api,
        server=server,
        task=task,
        host=options.host,
        port=sock.getsockname()[1],
        is_https=options.enable_https,
    )
    logger.info(
        f"Server listening on {handle.url}.",
        extra={"host": handle.host, "port": handle.port, "scheme": handle.scheme},
    )
    return handle
