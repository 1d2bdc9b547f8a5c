"""Request body parsers for URL-encoded and JSON payloads.

Both parsers are plain ASGI middleware. A parser only handles requests whose
``Content-Type`` it recognizes; it buffers the body up to ``limit`` bytes,
stores the decoded value on ``request.state.body`` and replays the raw bytes so
route handlers can still read the body themselves.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from typing import Any
from urllib.parse import parse_qsl

from starlette.datastructures import Headers
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from apiboot.errors import error_response

SIZE_UNITS = {
    "b": 1,
    "kb": 1024,
    "mb": 1024**2,
    "gb": 1024**3,
    "tb": 1024**4,
}
SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kmgt]?b)?\s*$", re.IGNORECASE)
NESTED_KEY_RE = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])+)$")
DEFAULT_LIMIT = "100kb"
DEFAULT_PARAMETER_LIMIT = 1000


class BodyParseError(ValueError):
    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def parse_size(value: int | str) -> int:
    """Convert ``1024``, ``"100kb"`` or ``"10mb"`` into a byte count."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid size: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Invalid size: {value!r}")
        return value
    match = SIZE_RE.match(str(value))
    if match is None:
        raise ValueError(f"Invalid size: {value!r}")
    number, unit = match.groups()
    return int(float(number) * SIZE_UNITS[(unit or "b").lower()])


def _media_type_and_charset(headers: Headers) -> tuple[str, str | None]:
    raw = headers.get("content-type") or ""
    media_type, _, params = raw.partition(";")
    charset = None
    for param in params.split(";"):
        name, _, value = param.strip().partition("=")
        if name.lower() == "charset" and value:
            charset = value.strip().strip('"').lower()
    return media_type.strip().lower(), charset


def _merge_value(target: dict[str, Any], key: str, value: Any) -> None:
    if key not in target:
        target[key] = value
    elif isinstance(target[key], list):
        target[key].append(value)
    else:
        target[key] = [target[key], value]


def _split_nested_key(key: str) -> list[str]:
    match = NESTED_KEY_RE.match(key)
    if match is None:
        return [key]
    head, brackets = match.groups()
    return [head, *re.findall(r"\[([^\[\]]*)\]", brackets)]


def _assign_nested(target: dict[str, Any], segments: list[str], value: str) -> None:
    node: Any = target
    for index, segment in enumerate(segments):
        is_last = index == len(segments) - 1
        if isinstance(node, list):
            if is_last:
                node.append(value)
                return
            child: dict[str, Any] = {}
            node.append(child)
            node = child
            continue

        if segment == "":
            segment = str(len(node))
        if is_last:
            _merge_value(node, segment, value)
            return
        existing = node.get(segment)
        if not isinstance(existing, (dict, list)):
            existing = [] if segments[index + 1] == "" else {}
            node[segment] = existing
        node = existing


def parse_urlencoded(
    text: str,
    *,
    extended: bool = False,
    parameter_limit: int = DEFAULT_PARAMETER_LIMIT,
) -> dict[str, Any]:
    if not text:
        return {}
    if text.count("&") + 1 > parameter_limit:
        raise BodyParseError(413, "PAYLOAD_TOO_LARGE", "too many parameters")
    parsed: dict[str, Any] = {}
    for key, value in parse_qsl(text, keep_blank_values=True):
        if extended:
            _assign_nested(parsed, _split_nested_key(key), value)
        else:
            _merge_value(parsed, key, value)
    return parsed


def parse_json(text: str, *, strict: bool = True) -> Any:
    stripped = text.strip()
    if not stripped:
        return {}
    if strict and stripped[0] not in "{[":
        raise BodyParseError(400, "BAD_REQUEST", "JSON body must be an object or an array")
    try:
        return json.loads(stripped)
    except json.JSONDecodeError as exc:
        raise BodyParseError(400, "BAD_REQUEST", f"Malformed JSON body: {exc.msg}") from exc


class BodyParserMiddleware:
    media_types: tuple[str, ...] = ()

    def __init__(self, app: ASGIApp, *, limit: int | str = DEFAULT_LIMIT, type: str | Iterable[str] | None = None) -> None:
        self.app = app
        self.limit = parse_size(limit)
        if type is not None:
            self.media_types = (type.lower(),) if isinstance(type, str) else tuple(t.lower() for t in type)

    def matches(self, media_type: str) -> bool:
        return media_type in self.media_types

    def parse(self, text: str) -> Any:
        raise NotImplementedError

    async def _read_body(self, headers: Headers, receive: Receive) -> bytes:
        content_length_raw = (headers.get("content-length") or "").strip()
        if content_length_raw:
            try:
                content_length = int(content_length_raw)
            except ValueError:
                raise BodyParseError(400, "BAD_REQUEST", "Invalid Content-Length header") from None
            if content_length < 0:
                raise BodyParseError(400, "BAD_REQUEST", "Invalid Content-Length header")
            if content_length > self.limit:
                raise BodyParseError(413, "PAYLOAD_TOO_LARGE", "Payload Too Large")

        chunks: list[bytes] = []
        received = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] != "http.request":
                break
            chunk = message.get("body", b"") or b""
            received += len(chunk)
            if received > self.limit:
                raise BodyParseError(413, "PAYLOAD_TOO_LARGE", "Payload Too Large")
            chunks.append(chunk)
            more_body = bool(message.get("more_body", False))
        return b"".join(chunks)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        media_type, charset = _media_type_and_charset(headers)
        state = scope.setdefault("state", {})
        if not self.matches(media_type) or "body" in state:
            await self.app(scope, receive, send)
            return

        try:
            body = await self._read_body(headers, receive)
            try:
                text = body.decode(charset or "utf-8")
            except LookupError:
                raise BodyParseError(415, "UNSUPPORTED_MEDIA_TYPE", f"Unsupported charset: {charset}") from None
            except UnicodeDecodeError:
                raise BodyParseError(400, "BAD_REQUEST", "Request body is not valid text") from None
            state["body"] = self.parse(text)
        except BodyParseError as exc:
            response = error_response(
                Request(scope),
                status_code=exc.status_code,
                code=exc.code,
                message=exc.message,
                details={"limit": self.limit} if exc.status_code == 413 else None,
            )
            await response(scope, receive, send)
            return

        replayed = False

        async def replay_receive() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay_receive, send)


class UrlEncodedParserMiddleware(BodyParserMiddleware):
    media_types = ("application/x-www-form-urlencoded",)

    def __init__(
        self,
        app: ASGIApp,
        *,
        limit: int | str = DEFAULT_LIMIT,
        extended: bool = False,
        parameter_limit: int = DEFAULT_PARAMETER_LIMIT,
        type: str | Iterable[str] | None = None,
    ) -> None:
        super().__init__(app, limit=limit, type=type)
        self.extended = bool(extended)
        self.parameter_limit = int(parameter_limit)

    def parse(self, text: str) -> Any:
        return parse_urlencoded(text, extended=self.extended, parameter_limit=self.parameter_limit)


class JsonParserMiddleware(BodyParserMiddleware):
    media_types = ("application/json",)

    def __init__(
        self,
        app: ASGIApp,
        *,
        limit: int | str = DEFAULT_LIMIT,
        strict: bool = True,
        type: str | Iterable[str] | None = None,
    ) -> None:
        super().__init__(app, limit=limit, type=type)
        self.strict = bool(strict)
        self._custom_type = type is not None

    def matches(self, media_type: str) -> bool:
        if media_type in self.media_types:
            return True
        return not self._custom_type and media_type.startswith("application/") and media_type.endswith("+json")

    def parse(self, text: str) -> Any:
        return parse_json(text, strict=self.strict)
