"""
Docket: Case Timeline Service
Blueprint registry and shared request helpers.
"""

import re

from flask import g, request

from docket.utils.errors import E, api_error

_INT_RE = re.compile(r"[+-]?\d+")


def json_body() -> tuple[dict, tuple | None]:
    """Return the request's JSON object, or a 400 error response."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return {}, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object", status=400)
    return data, None


def _as_int(raw) -> int | None:
    """Strict integer coercion: None for bools, fractions and non-digit text."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() else None
    if isinstance(raw, str) and _INT_RE.fullmatch(raw.strip()):
        return int(raw.strip())
    return None


def int_field(data: dict, name: str, *, required: bool = False) -> tuple[int | None, tuple | None]:
    """Read an integer field from a body; ``3.0`` passes, ``2.9`` and ``True`` do not."""
    raw = data.get(name)
    if raw is None or raw == "":
        if required:
            return None, api_error(E.VALIDATION_REQUIRED, f"{name} is required")
        return None, None
    value = _as_int(raw)
    if value is None:
        return None, api_error(E.VALIDATION_INVALID, f"{name} must be an integer", status=400)
    return value, None


def text_field(data: dict, name: str) -> str | None:
    value = data.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def resolve_user_id(data: dict) -> tuple[int | None, tuple | None]:
    """
    Acting user: body ``user_id``, else ``g.current_user_id`` set by an
    upstream auth layer, else the ``X-User-Id`` header.
    """
    if data.get("user_id") is not None:
        return int_field(data, "user_id")
    principal = getattr(g, "current_user_id", None)
    if principal is not None:
        return principal, None
    header = request.headers.get("X-User-Id")
    if header:
        return int_field({"X-User-Id": header}, "X-User-Id")
    return None, None
