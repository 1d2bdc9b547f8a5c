import json

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from apiboot.middleware.body_parsers import (
    BodyParseError,
    JsonParserMiddleware,
    UrlEncodedParserMiddleware,
    parse_json,
    parse_size,
    parse_urlencoded,
)


def _build_echo_app(*, url_options=None, json_options=None) -> FastAPI:
    api = FastAPI()
    # add_middleware prepends, so the URL-encoded parser ends up outermost.
    api.add_middleware(JsonParserMiddleware, **(json_options or {"limit": "10mb"}))
    api.add_middleware(UrlEncodedParserMiddleware, **(url_options or {"limit": "10mb", "extended": False}))

    @api.post("/echo")
    async def echo(request: Request):
        raw = await request.body()
        return {"body": getattr(request.state, "body", None), "raw": raw.decode("utf-8")}

    return api


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0, 0),
        (1024, 1024),
        ("512", 512),
        ("100kb", 102400),
        ("10mb", 10 * 1024 * 1024),
        ("1.5KB", 1536),
        ("1gb", 1024**3),
    ],
)
def test_parse_size_understands_units(value, expected):
    assert parse_size(value) == expected


@pytest.mark.parametrize("value", ["ten", "10 parsecs", -1, True])
def test_parse_size_rejects_invalid_values(value):
    with pytest.raises(ValueError):
        parse_size(value)


def test_parse_urlencoded_flat_mode_keeps_brackets_literal():
    assert parse_urlencoded("a=1&a=2&b=&c[d]=3") == {"a": ["1", "2"], "b": "", "c[d]": "3"}
    assert parse_urlencoded("") == {}


def test_parse_urlencoded_extended_mode_builds_nested_values():
    parsed = parse_urlencoded(
        "user[name]=ada&user[roles][]=admin&user[roles][]=ops&tags[]=a&plain=x%20y",
        extended=True,
    )
    assert parsed == {
        "user": {"name": "ada", "roles": ["admin", "ops"]},
        "tags": ["a"],
        "plain": "x y",
    }


def test_parse_urlencoded_enforces_parameter_limit():
    with pytest.raises(BodyParseError) as exc_info:
        parse_urlencoded("a=1&b=2&c=3", parameter_limit=2)
    assert exc_info.value.status_code == 413


def test_parse_json_strict_mode_rejects_primitives():
    assert parse_json('{"a": 1}') == {"a": 1}
    assert parse_json("[1, 2]") == [1, 2]
    assert parse_json("  ") == {}
    assert parse_json('"text"', strict=False) == "text"

    with pytest.raises(BodyParseError):
        parse_json('"text"')
    with pytest.raises(BodyParseError):
        parse_json("{broken")


def test_json_parser_exposes_parsed_body_and_replays_raw_bytes():
    with TestClient(_build_echo_app()) as client:
        response = client.post("/echo", json={"hello": "world"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["body"] == {"hello": "world"}
    assert json.loads(payload["raw"]) == {"hello": "world"}


def test_json_parser_accepts_vendor_json_media_types():
    with TestClient(_build_echo_app()) as client:
        response = client.post(
            "/echo",
            content='{"a": 1}',
            headers={"Content-Type": "application/vnd.api+json"},
        )
    assert response.json()["body"] == {"a": 1}


def test_urlencoded_parser_parses_form_bodies():
    with TestClient(_build_echo_app(url_options={"extended": True})) as client:
        response = client.post("/echo", data={"user[name]": "ada", "page": "2"})

    assert response.status_code == 200
    assert response.json()["body"] == {"user": {"name": "ada"}, "page": "2"}


def test_parsers_ignore_other_content_types():
    with TestClient(_build_echo_app()) as client:
        response = client.post("/echo", content="plain text", headers={"Content-Type": "text/plain"})

    assert response.status_code == 200
    assert response.json() == {"body": None, "raw": "plain text"}


def test_malformed_json_returns_bad_request_error_payload():
    with TestClient(_build_echo_app()) as client:
        response = client.post("/echo", content="{invalid", headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    payload = response.json()
    assert payload["code"] == "BAD_REQUEST"
    assert payload["error"] == payload["message"]


def test_body_over_limit_is_rejected_with_payload_too_large():
    api = _build_echo_app(json_options={"limit": "16b"})
    with TestClient(api) as client:
        response = client.post("/echo", json={"payload": "x" * 64})

    assert response.status_code == 413
    payload = response.json()
    assert payload["code"] == "PAYLOAD_TOO_LARGE"
    assert payload["details"]["limit"] == 16


def test_streamed_body_over_limit_is_rejected_without_content_length():
    api = _build_echo_app(json_options={"limit": 32})

    def chunks():
        yield b'{"payload":"'
        yield b"x" * 64
        yield b'"}'

    with TestClient(api) as client:
        response = client.post("/echo", content=chunks(), headers={"Content-Type": "application/json"})

    assert response.status_code == 413
    assert response.json()["code"] == "PAYLOAD_TOO_LARGE"


def test_invalid_content_length_is_rejected():
    with TestClient(_build_echo_app()) as client:
        response = client.post(
            "/echo",
            content='{"a":1}',
            headers={"Content-Type": "application/json", "Content-Length": "invalid"},
        )

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid Content-Length header"


def test_unknown_charset_is_rejected():
    with TestClient(_build_echo_app()) as client:
        response = client.post(
            "/echo",
            content='{"a":1}',
            headers={"Content-Type": "application/json; charset=klingon"},
        )

    assert response.status_code == 415
    assert response.json()["code"] == "UNSUPPORTED_MEDIA_TYPE"
