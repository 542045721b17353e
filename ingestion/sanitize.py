"""Field sanitizers for incoming error payloads.

Sanitizers never reject. Values that are too long are truncated, and values
of the wrong shape are replaced with a safe default. Rejection is the gate's
job and only applies to the required fields.
"""

import json
import re
from typing import Any

from schemas.events import Environment

MESSAGE_MAX = 2000
STACK_MAX = 10_000
URL_MAX = 2000
METHOD_MAX = 20
ROUTE_MAX = 500
APP_VERSION_MAX = 50
USER_AGENT_MAX = 500
FINGERPRINT_MAX = 64
METADATA_MAX_CHARS = 5000

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def clip(value: Any, limit: int) -> str | None:
    """Return value trimmed and truncated to limit chars.

    Non-strings and strings that are empty after trimming become None.
    """
    if not isinstance(value, str):
        return None
    return value.strip()[:limit] or None


def valid_uuid(value: Any) -> str | None:
    if isinstance(value, str) and _UUID_RE.match(value):
        return value
    return None


def status_code(value: Any) -> int | None:
    # bool is an int subclass; true/false in JSON is not a status.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def environment(value: Any) -> Environment:
    try:
        return Environment(value)
    except (ValueError, TypeError):
        return Environment.PRODUCTION


def bounded_metadata(value: Any) -> dict[str, Any]:
    """Keep metadata only if it is a mapping whose JSON form fits in METADATA_MAX_CHARS."""
    if not isinstance(value, dict):
        return {}
    try:
        serialized = json.dumps(value)
    except (TypeError, ValueError, RecursionError):
        return {}
    return value if len(serialized) <= METADATA_MAX_CHARS else {}
