"""
In-memory filtering, sorting and pagination for record lists.

Works on model instances or plain dicts.  Sorting is stable so a given
(filter, sort, page) request always returns the same rows.
"""

import math
from datetime import date, datetime
from typing import Any, Iterable, Optional


def _value(record, field: str):
    if isinstance(record, dict):
        return record.get(field)
    return getattr(record, field, None)


def filter_records(
    records: Iterable,
    *,
    search_term: Optional[str] = None,
    search_fields: Iterable[str] = (),
    status: Optional[str] = None,
    date_value: Optional[str] = None,
    date_field: str = "date",
    extra: Optional[dict] = None,
) -> list:
    """AND-combine a text search with exact status, date and extra filters.

    ``search_term`` matches case-insensitively as a substring of any of
    ``search_fields``.  Empty filters are ignored.
    """
    term = (search_term or "").strip().lower()
    search_fields = tuple(search_fields)
    extra = {k: v for k, v in (extra or {}).items() if v not in (None, "")}

    result = []
    for record in records:
        if term and not any(
            term in str(_value(record, f) or "").lower() for f in search_fields
        ):
            continue
        if status and _value(record, "status") != status:
            continue
        if date_value:
            current = _value(record, date_field)
            current = current.isoformat() if isinstance(current, (date, datetime)) else current
            if current != date_value:
                continue
        if any(str(_value(record, k)) != str(v) for k, v in extra.items()):
            continue
        result.append(record)
    return result


def _sort_key(value: Any, kind: str):
    if kind == "number":
        return float(value)
    if kind == "date":
        if isinstance(value, datetime):
            return value.timestamp()
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day).timestamp()
        return datetime.fromisoformat(str(value)).timestamp()
    return str(value).lower()


def sort_records(
    records: Iterable,
    field: str,
    direction: str = "asc",
    numeric_fields: Iterable[str] = ("amount",),
    date_fields: Iterable[str] = ("date", "created_at"),
) -> list:
    """Stable sort on ``field``; records without a value always sort last."""
    if field in set(numeric_fields):
        kind = "number"
    elif field in set(date_fields):
        kind = "date"
    else:
        kind = "text"

    records = list(records)
    present = [r for r in records if _value(r, field) not in (None, "")]
    missing = [r for r in records if _value(r, field) in (None, "")]
    # sorted() is stable with reverse=True too: equal keys keep input order
    present = sorted(
        present,
        key=lambda r: _sort_key(_value(r, field), kind),
        reverse=(direction == "desc"),
    )
    return present + missing


def paginate(records: list, page: int = 1, page_size: int = 10) -> dict:
    """Slice one 1-indexed page; out-of-range pages clamp to the nearest one."""
    page_size = max(1, int(page_size or 1))
    total = len(records)
    total_pages = math.ceil(total / page_size)
    page = min(max(1, int(page or 1)), max(total_pages, 1))
    start = (page - 1) * page_size
    return {
        "items": records[start:start + page_size],
        "page": page,
        "page_size": page_size,
        "total": total,
        "total_pages": total_pages,
    }
