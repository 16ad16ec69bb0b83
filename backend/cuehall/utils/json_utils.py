"""JSON utilities using orjson.

Usage:
    from cuehall.utils.json_utils import json_dumps, json_loads, ORJSONResponse
"""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

import orjson
from fastapi.responses import JSONResponse


def _default_serializer(obj: Any) -> Any:
    """Serializer for types not natively supported by orjson."""
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def json_dumps(data: Any, *, pretty: bool = False) -> str:
    """Serialize data to a JSON string."""
    options = orjson.OPT_UTC_Z
    if pretty:
        options |= orjson.OPT_INDENT_2
    return orjson.dumps(data, default=_default_serializer, option=options).decode("utf-8")


def json_dumps_bytes(data: Any) -> bytes:
    """Serialize data to JSON bytes (used for pub/sub payloads)."""
    return orjson.dumps(data, default=_default_serializer, option=orjson.OPT_UTC_Z)


def json_loads(data: str | bytes) -> Any:
    """Deserialize JSON string/bytes to a Python object."""
    return orjson.loads(data)


class ORJSONResponse(JSONResponse):
    """FastAPI response class rendering with orjson."""

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        return json_dumps_bytes(content)
