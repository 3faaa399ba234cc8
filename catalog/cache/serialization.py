"""
Cache value serialization.

Values are stored as UTF-8 JSON so other services sharing the cache can
read them.
"""

import json
from typing import Any


def serialize_value(value: Any) -> bytes:
    """
    Serialize a Python value to bytes for caching.

    Pydantic models and dates are converted; any other non-JSON type
    raises TypeError rather than being written in a lossy form.
    """
    def default_handler(obj):
        if hasattr(obj, 'model_dump'):
            return obj.model_dump(mode='json')
        if hasattr(obj, 'isoformat'):
            return obj.isoformat()
        raise TypeError(f"Cannot cache value of type {type(obj).__name__}")

    json_str = json.dumps(value, default=default_handler, ensure_ascii=False)
    return json_str.encode('utf-8')


def deserialize_value(data: bytes) -> Any:
    """
    Deserialize bytes back to Python value.

    Raises ValueError on malformed payloads.
    """
    if not data:
        return None
    if isinstance(data, str):
        return json.loads(data)
    return json.loads(data.decode('utf-8'))
