import sys
from types import SimpleNamespace

import pytest
from conftest import build_test_options, write_route_module
from fastapi import FastAPI
from fastapi.testclient import TestClient

import apiboot
from apiboot import build_app, start_server
from apiboot.errors import InvalidConfiguration, RouteModuleLoadError


@pytest.fixture
def trace(monkeypatch):
    events: list[str] = []
    monkeypatch.setitem(sys.modules, "apiboot_trace", SimpleNamespace(events=events))
    return events


def test_build_app_runs_stages_in_fixed_order(routes_dir, trace):
    write_route_module(routes_dir, "users", prefix="/users", traced=True)
    write_route_module(routes_dir, "orders", prefix="/orders", traced=True)

    def on_routes_loading(api: FastAPI) -> None:
        trace.append("routes_loading")
        assert not any(getattr(route, "path", "").endswith("/whoami") for route in api.routes)

        @api.get("/early")
        async def early():
            return {"early": True}

    def on_routes_loaded(api: FastAPI) -> None:
        trace.append("routes_loaded")
        paths = {getattr(route, "path", None) for route in api.routes}
        assert {"/users/whoami", "/orders/whoami"} <= paths
        assert Exception not in api.exception_handlers

    api, builder = build_app(
        build_test_options(
            routes_path=routes_dir,
            on_routes_loading=on_routes_loading,
            on_routes_loaded=on_routes_loaded,
        )
    )

    assert trace == ["routes_loading", "import:orders", "import:users", "routes_loaded"]
    assert Exception in api.exception_handlers
    assert builder.error_handler_installed is True
    assert builder.built is True
    assert builder.middleware_names == ["urlencoded_parser", "json_parser", "terminal_error"]

    with TestClient(api) as client:
        assert client.get("/early").json() == {"early": True}
        assert client.get("/users/whoami").json() == {"module": "users"}


def test_build_app_ignores_non_callable_hooks(routes_dir):
    write_route_module(routes_dir, "users", prefix="/users")

    api, builder = build_app(
        build_test_options(routes_path=routes_dir, on_routes_loading="not callable", on_routes_loaded=42)
    )

    assert [mount.path for mount in builder.mounts] == ["/users"]
    assert builder.error_handler_installed is True


def test_build_app_accepts_plain_mapping(routes_dir):
    write_route_module(routes_dir, "users", prefix="/users")

    api, builder = build_app(
        {
            "port": "8081",
            "routes_path": str(routes_dir),
            "api_prefix": "/api/",
            "log_level": "WARNING",
            "log_json": False,
        }
    )

    assert api.state.startup_options.port == 8081
    with TestClient(api) as client:
        assert client.get("/api/users/whoami").json() == {"module": "users"}


def test_start_server_rejects_missing_routes_path_before_binding(tmp_path, monkeypatch):
    def fail_run_server(*_args, **_kwargs):
        raise AssertionError("run_server must not be reached")

    monkeypatch.setattr(apiboot, "run_server", fail_run_server)

    with pytest.raises(InvalidConfiguration):
        start_server(build_test_options(routes_path=tmp_path / "missing"))

    with pytest.raises(InvalidConfiguration):
        start_server(None)


def test_start_server_rejects_broken_route_module_before_binding(routes_dir, monkeypatch):
    (routes_dir / "broken.py").write_text("import does_not_exist_anywhere\n", encoding="utf-8")

    def fail_run_server(*_args, **_kwargs):
        raise AssertionError("run_server must not be reached")

    monkeypatch.setattr(apiboot, "run_server", fail_run_server)

    with pytest.raises(RouteModuleLoadError):
        start_server(build_test_options(routes_path=routes_dir))


def test_hooks_do_not_run_when_validation_fails(tmp_path):
    calls = []

    with pytest.raises(InvalidConfiguration):
        build_app(
            build_test_options(
                port=0,
                routes_path=tmp_path,
                on_routes_loading=lambda api: calls.append("loading"),
                on_routes_loaded=lambda api: calls.append("loaded"),
            )
        )

    assert calls == []


def test_terminal_error_handler_converts_route_errors(routes_dir):
    (routes_dir / "boom.py").write_text(
        "from fastapi import APIRouter\n"
        "\n"
        "router = APIRouter()\n"
        "prefix = '/boom'\n"
        "\n"
        "\n"
        "@router.get('/now')\n"
        "async def now():\n"
        "    raise RuntimeError('boom')\n",
        encoding="utf-8",
    )

    api, _builder = build_app(build_test_options(routes_path=routes_dir))

    with TestClient(api, raise_server_exceptions=False) as client:
        boom = client.get("/boom/now")
        missing = client.get("/nothing-here")

    assert boom.status_code == 500
    assert boom.json()["code"] == "INTERNAL_ERROR"
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"


def test_metrics_endpoint_is_exposed_when_enabled(routes_dir):
    write_route_module(routes_dir, "users", prefix="/users")

    api, builder = build_app(
        build_test_options(routes_path=routes_dir, enable_response_time=True, enable_metrics=True)
    )

    with TestClient(api) as client:
        client.get("/users/whoami")
        metrics = client.get("/metrics")

    assert metrics.status_code == 200
    assert 'apiboot_http_requests_total{method="GET",path="/users/whoami",status_code="200"}' in metrics.text


def test_route_errors_still_pass_through_outer_middleware(routes_dir):
    (routes_dir / "boom.py").write_text(
        "from fastapi import APIRouter\n"
        "\n"
        "router = APIRouter()\n"
        "prefix = '/boom'\n"
        "\n"
        "\n"
        "@router.get('/now')\n"
        "async def now():\n"
        "    raise RuntimeError('boom')\n",
        encoding="utf-8",
    )

    api, builder = build_app(
        build_test_options(routes_path=routes_dir, enable_cors=True, enable_response_time=True)
    )

    with TestClient(api, raise_server_exceptions=False) as client:
        response = client.get("/boom/now", headers={"Origin": "https://client.example"})

    assert builder.middleware_names[-1] == "terminal_error"
    assert response.status_code == 500
    assert response.json()["code"] == "INTERNAL_ERROR"
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["X-Response-Time"].endswith("ms")


def test_route_modules_can_raise_coded_http_errors(routes_dir):
    (routes_dir / "items.py").write_text(
        "from fastapi import APIRouter\n"
        "\n"
        "from apiboot import http_error\n"
        "\n"
        "router = APIRouter()\n"
        "prefix = '/items'\n"
        "\n"
        "\n"
        "@router.post('/')\n"
        "async def create():\n"
        "    raise http_error(409, 'ITEM_EXISTS', 'Item already exists', details={'id': 1})\n",
        encoding="utf-8",
    )

    api, _builder = build_app(build_test_options(routes_path=routes_dir))

    with TestClient(api) as client:
        response = client.post("/items/")

    assert response.status_code == 409
    assert response.json() == {
        "code": "ITEM_EXISTS",
        "message": "Item already exists",
        "error": "Item already exists",
        "details": {"id": 1},
    }
