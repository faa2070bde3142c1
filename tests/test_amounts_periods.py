from datetime import date
from decimal import Decimal

import pytest

from amounts import from_cents, percent_of, to_cents
from errors import ValidationError
from periods import DateRange, resolve_range


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("12.34", 1234),
        (Decimal("0.10"), 10),
        (7, 700),
        ("0", 0),
        (" 5.5 ", 550),
    ],
)
def test_to_cents(value, expected) -> None:
    assert to_cents(value) == expected


@pytest.mark.parametrize(
    "value", ["-1", "1.005", "abc", "NaN", "Infinity", "1e30", "10000000000000"]
)
def test_to_cents_rejects_bad_amounts(value) -> None:
    with pytest.raises(ValueError):
        to_cents(value)


def test_from_cents_keeps_two_places() -> None:
    assert from_cents(1234) == Decimal("12.34")
    assert str(from_cents(500)) == "5.00"


def test_percent_of_rounds_half_up() -> None:
    assert percent_of(125, 1000) == 13
    assert percent_of(875, 1000) == 88
    assert percent_of(1, 3) == 33
    assert percent_of(2, 3) == 67
    assert percent_of(5, 0) == 0


def test_resolve_range_from_strings() -> None:
    period = resolve_range("2025-01-01", "2025-01-31")

    assert period == DateRange(date(2025, 1, 1), date(2025, 1, 31))
    assert period.is_bounded


def test_unbounded_range() -> None:
    period = resolve_range(None, "")

    assert not period.is_bounded
    assert resolve_range(period="all") == DateRange()


def test_named_periods() -> None:
    today = date(2025, 3, 15)

    assert resolve_range(period="this_month", today=today) == DateRange(
        date(2025, 3, 1), date(2025, 3, 31)
    )
    assert resolve_range(period="last_month", today=today) == DateRange(
        date(2025, 2, 1), date(2025, 2, 28)
    )
    assert resolve_range(period="this_month", today=date(2024, 12, 3)) == DateRange(
        date(2024, 12, 1), date(2024, 12, 31)
    )
    assert resolve_range(period="last_month", today=date(2025, 1, 9)) == DateRange(
        date(2024, 12, 1), date(2024, 12, 31)
    )


def test_resolve_range_errors() -> None:
    with pytest.raises(ValidationError) as excinfo:
        resolve_range("2025-02-01", "2025-01-01")
    assert excinfo.value.field == "start_date"

    with pytest.raises(ValidationError) as excinfo:
        resolve_range("2025-01-01", "2025-13-01")
    assert excinfo.value.field == "end_date"

    with pytest.raises(ValidationError) as excinfo:
        resolve_range(period="fortnight")
    assert excinfo.value.field == "period"


def test_named_period_cannot_be_mixed_with_dates() -> None:
    for start, end in (("2025-01-01", None), (None, "2025-01-31")):
        with pytest.raises(ValidationError) as excinfo:
            resolve_range(start, end, period="this_month")
        assert excinfo.value.field == "period"

    # "custom" is the explicit way to pass dates alongside a period
    assert resolve_range("2025-01-01", "2025-01-31", period="custom") == DateRange(
        date(2025, 1, 1), date(2025, 1, 31)
    )
