# opsdesk/utils/parsing.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from opsdesk.errors import InvalidInput


# ======================
# Parsers
# ======================
def parse_int(val) -> Optional[int]:
    try:
        if val is None or str(val).strip() == "":
            return None
        return int(val)
    except (TypeError, ValueError):
        return None


def parse_bool(val) -> bool:
    if isinstance(val, bool):
        return val
    return str(val or "").strip().lower() in ("1", "true", "yes", "on")


def parse_iso_datetime(val: Any, field: str) -> Optional[datetime]:
    """
    ISO 8601 date or datetime -> naive UTC datetime.
    None/"" -> None. Anything unparseable -> InvalidInput("Invalid <field>").
    """
    if val is None or (isinstance(val, str) and not val.strip()):
        return None
    if not isinstance(val, str):
        raise InvalidInput(f"Invalid {field}")

    s = val.strip()
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        raise InvalidInput(f"Invalid {field}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def clean_str(val, *, max_len: int | None = None) -> Optional[str]:
    if val is None:
        return None
    if not isinstance(val, str):
        raise InvalidInput("Expected a string value")
    s = val.strip()
    if not s:
        return None
    if max_len is not None and len(s) > max_len:
        raise InvalidInput(f"Value is too long (max {max_len} characters)")
    return s


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    """Naive UTC datetime -> '2026-01-21T10:00:00Z'."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.isoformat(timespec="seconds") + "Z"
