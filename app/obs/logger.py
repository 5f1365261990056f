"""Structured JSON logging to stdout.

One JSON object per line with ts/level/event plus the request and search ids
from context. Credential-looking fields are masked down to their last four
characters, including inside nested dicts such as request headers.
"""

from typing import Any, Dict
from datetime import datetime, timezone
import json

from app.obs.context import request_id_var, search_id_var


_SECRET_FIELDS = frozenset({"api_key", "x-api-key", "x_api_key", "authorization"})


def _redact_secret(value: Any) -> Any:
    s = str(value) if value is not None else ""
    if not s:
        return s
    if len(s) <= 4:
        return "***"
    return f"***{s[-4:]}"


def _scrub(key: str, value: Any) -> Any:
    if key.lower() in _SECRET_FIELDS:
        return _redact_secret(value)
    if isinstance(value, dict):
        return {k: _scrub(str(k), v) for k, v in value.items()}
    return value


def log_event(event: str, **fields: Any) -> None:
    payload: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "level": fields.pop("level", "INFO"),
        "event": event,
        "request_id": request_id_var.get(),
    }
    # Search id comes from context unless the caller names one
    if "search_id" not in fields:
        payload["search_id"] = search_id_var.get()

    for k, v in fields.items():
        payload[k] = _scrub(k, v)

    try:
        print(json.dumps(payload, separators=(",", ":"), default=str))
    except Exception:
        # As a last resort, avoid crashing the app due to logging
        pass
