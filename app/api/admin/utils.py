from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

from app.services.errors import ValidationError
from app.utils.time import end_of_day, parse_timestamp

_DATE_ONLY = re.compile(r"\d{4}-\d{2}-\d{2}")


def parse_date(value: str | None, label: str, *, inclusive_end: bool = False) -> datetime | None:
    """Parse a query-string timestamp.

    With ``inclusive_end`` a bare ``YYYY-MM-DD`` means the last instant of that
    day, so an upper bound of "2024-01-15" still covers tickets from the 15th.
    """
    if not value:
        return None
    text = value.strip()
    if inclusive_end and _DATE_ONLY.fullmatch(text):
        try:
            return end_of_day(date.fromisoformat(text))
        except ValueError as exc:
            raise ValidationError(f"Invalid {label}: {value!r}") from exc
    parsed = parse_timestamp(text)
    if parsed is None:
        raise ValidationError(f"Invalid {label}: {value!r}")
    return parsed


def list_response(items: list[Any], total: int, **extra: Any) -> dict[str, Any]:
    return {"data": items, "total": total, **extra}
