"""
Schedule calculator: pure date arithmetic for recurring obligations.

No I/O happens here; the scheduler and the template preview endpoints share
these functions so a preview always matches what execution will do.
"""
from datetime import timedelta

from dateutil.relativedelta import relativedelta

from services.errors import InvalidArgument

FREQUENCY_STEPS = {
    'weekly': timedelta(days=7),
    'biweekly': timedelta(days=14),
    'monthly': relativedelta(months=1),
    'quarterly': relativedelta(months=3),
    'yearly': relativedelta(months=12),
}


def next_occurrence(anchor_or_last, frequency):
    """Return the occurrence one period after ``anchor_or_last``.

    Month based frequencies clamp to the last day of the target month, so
    Jan 31 + monthly is Feb 28 (Feb 29 in leap years).
    """
    try:
        step = FREQUENCY_STEPS[frequency]
    except KeyError:
        raise InvalidArgument(f'Unknown frequency: {frequency}')
    return anchor_or_last + step


def is_due(template, as_of):
    """True when an active template's next occurrence is on or before ``as_of``"""
    return (
        bool(template.is_active)
        and template.next_execution_date is not None
        and template.next_execution_date <= as_of
    )


def occurrence_after(anchor, frequency, executed_count):
    """Occurrence reached after ``executed_count`` executions starting at ``anchor``"""
    current = anchor
    for _ in range(executed_count):
        current = next_occurrence(current, frequency)
    return current


def upcoming_occurrences(start, frequency, count, end_date=None):
    """List up to ``count`` occurrences starting at ``start`` (inclusive)"""
    if count < 0:
        raise InvalidArgument('count must not be negative')
    dates = []
    current = start
    while len(dates) < count:
        if end_date is not None and current > end_date:
            break
        dates.append(current)
        current = next_occurrence(current, frequency)
    return dates
