from apiboot.middleware.access_log import AccessLogMiddleware
from apiboot.middleware.body_parsers import JsonParserMiddleware, UrlEncodedParserMiddleware, parse_size
from apiboot.middleware.response_time import ResponseTimeMiddleware
from apiboot.middleware.terminal_error import TerminalErrorMiddleware

__all__ = [
    "AccessLogMiddleware",
    "JsonParserMiddleware",
    "ResponseTimeMiddleware",
    "TerminalErrorMiddleware",
    "UrlEncodedParserMiddleware",
    "parse_size",
]
