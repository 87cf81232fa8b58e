"""Assessment schedule arithmetic."""

from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from aumos_compliance_learning.errors import ValidationError

RUN_HOUR = 2

_FREQUENCY_OFFSETS: dict[str, relativedelta | timedelta] = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "biweekly": timedelta(days=14),
    "monthly": relativedelta(months=1),
    "quarterly": relativedelta(months=3),
    "annually": relativedelta(years=1),
}


def calculate_next_run_time(frequency: str, from_time: datetime) -> datetime:
    """Next run for a schedule, normalised to 02:00 in ``from_time``'s timezone.

    The offset is at least one day, so the result is always later than
    ``from_time``. Month arithmetic clamps to the last day of shorter months.

    Args:
        frequency: daily | weekly | biweekly | monthly | quarterly | annually.
        from_time: Reference time, usually the moment the run happened.

    Returns:
        The next run time.

    Raises:
        ValidationError: If the frequency is unknown.
    """
    offset = _FREQUENCY_OFFSETS.get(frequency)
    if offset is None:
        raise ValidationError(message=f"Unknown assessment frequency: {frequency}", field="frequency")
    shifted = from_time + offset
    return shifted.replace(hour=RUN_HOUR, minute=0, second=0, microsecond=0)
