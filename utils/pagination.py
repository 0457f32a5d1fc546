from typing import Any, Optional


# Largest $skip a BSON int64 can carry
MAX_SKIP = 2 ** 63 - 1


def _to_int(value: Any) -> Optional[int]:
    """Parse an int the way query strings arrive, None when not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def coerce_page(page: Any) -> int:
    """Zero-based page number, 0 when absent, invalid or negative"""
    parsed = _to_int(page)
    if parsed is None or parsed < 0:
        return 0
    return parsed


def coerce_limit(limit: Any, default: int, maximum: Optional[int] = None) -> int:
    """Positive page size, ``default`` when absent, invalid or not positive"""
    parsed = _to_int(limit)
    if parsed is None or parsed <= 0:
        parsed = default
    if maximum is not None:
        parsed = min(parsed, maximum)
    return parsed


def page_window(page: Any, limit: Any, default: int, maximum: Optional[int] = None):
    """Return ``(skip, limit)`` for a requested page, pages past ``MAX_SKIP`` are clamped"""
    limit = coerce_limit(limit, default, maximum)
    page = min(coerce_page(page), MAX_SKIP // limit)
    return page * limit, limit
