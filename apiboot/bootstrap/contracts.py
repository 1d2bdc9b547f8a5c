from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, TypeAlias

from fastapi import FastAPI

from apiboot.config import StartupOptions

StartupOptionsInput: TypeAlias = StartupOptions | Mapping[str, Any] | None
RoutesHook: TypeAlias = Callable[[FastAPI], Any]
