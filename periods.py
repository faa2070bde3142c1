from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

from errors import ValidationError

DateInput = Union[date, str, None]

NAMED_PERIODS = ("this_month", "last_month")


@dataclass(frozen=True)
class DateRange:
    start: Optional[date] = None
    end: Optional[date] = None

    @property
    def is_bounded(self) -> bool:
        return self.start is not None or self.end is not None


def parse_date(value: DateInput, field: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {value!r}", field=field) from exc


def resolve_range(
    start: DateInput = None,
    end: DateInput = None,
    *,
    period: Optional[str] = None,
    today: Optional[date] = None,
) -> DateRange:
    today = today or date.today()
    if period in NAMED_PERIODS and (start or end):
        raise ValidationError(
            f"Period {period!r} cannot be combined with start or end dates",
            field="period",
        )
    if period == "this_month":
        first = today.replace(day=1)
        if first.month == 12:
            next_month = first.replace(year=first.year + 1, month=1)
        else:
            next_month = first.replace(month=first.month + 1)
        return DateRange(first, next_month - date.resolution)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        return DateRange(last_month_end.replace(day=1), last_month_end)
    if period not in (None, "", "all", "custom"):
        raise ValidationError(f"Unknown period: {period!r}", field="period")

    start_date = parse_date(start, "start_date")
    end_date = parse_date(end, "end_date")
    if start_date and end_date and start_date > end_date:
        raise ValidationError("Start date must be before end date", field="start_date")
    return DateRange(start_date, end_date)
