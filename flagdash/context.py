"""
Evaluation context encoding.

A context is flattened into query-string pairs so targeted evaluations stay
plain GET requests:

    {"user": {"id": "alice", "plan": "pro"}, "country": "US"}
    -> user_id=alice&user_plan=pro&country=US
"""

import json
from typing import Any, List, Mapping, Optional, Tuple
from urllib.parse import quote

EvaluationContext = Mapping[str, Any]

# Characters encodeURIComponent leaves alone besides the unreserved set
_SAFE_CHARS = "!*'()"


def _stringify(value: Any) -> str:
    if value is True:
        return "true"
    if value is False:
        return "false"
    if value is None:
        return "null"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def encode_component(value: str) -> str:
    """Percent-encode one path segment or query component."""
    return quote(value, safe=_SAFE_CHARS)


def context_params(context: Optional[EvaluationContext]) -> List[Tuple[str, str]]:
    """
    Flatten a context into ordered ``(name, value)`` pairs.

    Keys of a nested ``user`` mapping are promoted with a ``user_`` prefix,
    except ``id`` which becomes ``user_id``. Every other top-level key is
    passed through as-is. Insertion order is preserved.
    """
    if not context:
        return []

    params: List[Tuple[str, str]] = []
    for key, value in context.items():
        if key == "user" and isinstance(value, Mapping):
            for user_key, user_value in value.items():
                name = "user_id" if user_key == "id" else f"user_{user_key}"
                params.append((name, _stringify(user_value)))
        else:
            params.append((str(key), _stringify(value)))
    return params


def encode_context(context: Optional[EvaluationContext]) -> str:
    """Encode a context as a percent-encoded query string (no leading ``?``)."""
    return "&".join(
        f"{encode_component(name)}={encode_component(value)}"
        for name, value in context_params(context)
    )


def with_context(path: str, context: Optional[EvaluationContext]) -> str:
    """Append the encoded context to ``path`` when there is one."""
    qs = encode_context(context)
    return f"{path}?{qs}" if qs else path
