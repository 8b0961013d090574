from datetime import datetime, timezone

import pytest

from app.api.admin.utils import parse_date
from app.services.errors import ValidationError


def test_date_only_upper_bound_is_the_end_of_that_day() -> None:
    assert parse_date("2024-01-15", "date_to", inclusive_end=True) == datetime(
        2024, 1, 15, 23, 59, 59, 999999, tzinfo=timezone.utc
    )
    assert parse_date(" 2024-01-15 ", "date_to", inclusive_end=True).hour == 23


def test_parse_date_keeps_explicit_times_and_lower_bounds() -> None:
    assert parse_date("2024-01-15", "date_from") == datetime(2024, 1, 15, tzinfo=timezone.utc)
    assert parse_date("2024-01-15T08:30:00Z", "date_to", inclusive_end=True) == datetime(
        2024, 1, 15, 8, 30, tzinfo=timezone.utc
    )
    assert parse_date(None, "date_to", inclusive_end=True) is None
    assert parse_date("", "date_from") is None


@pytest.mark.parametrize("value", ["2024-02-30", "yesterday", "15/01/2024"])
def test_parse_date_rejects_garbage(value: str) -> None:
    with pytest.raises(ValidationError):
        parse_date(value, "date_to", inclusive_end=True)
