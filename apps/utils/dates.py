from datetime import datetime, time, timedelta

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from apps.utils.exceptions import BusinessLogicException


def _parse(value, end_of_day=False):
    if not value:
        return None

    # Date-only first: parse_datetime would read "2026-03-01" as midnight
    day = parse_date(value)
    if day is not None:
        moment = datetime.combine(day, time.max if end_of_day else time.min)
    else:
        moment = parse_datetime(value)
        if moment is None:
            raise BusinessLogicException(f"Invalid date: {value}", code="invalid_date")

    if timezone.is_naive(moment):
        moment = timezone.make_aware(moment)
    return moment


def parse_range(params, default_days=None):
    """
    Read ?start=&end= (ISO date or datetime) from query params.
    With default_days, a missing start falls back to that many days before end.
    """
    try:
        start = _parse(params.get('start'))
        end = _parse(params.get('end'), end_of_day=True)
    except ValueError:
        # parse_datetime raises on well-formed but impossible values
        raise BusinessLogicException("Invalid date range.", code="invalid_date")

    if default_days is not None:
        end = end or timezone.now()
        start = start or end - timedelta(days=default_days)

    if start and end and start > end:
        raise BusinessLogicException("Start must be before end.", code="invalid_date")
    return start, end
