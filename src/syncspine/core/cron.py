"""Schedule evaluation for connector syncs.

Connector schedules are stored as Quartz expressions (seconds first, optional
year last, ``?`` for "no specific value"). croniter understands classic
five-field crontab, so expressions are converted before evaluation. Plain
five-field crontab expressions are accepted unchanged.

``is_sync_due`` is shared by the scheduler (should a job be created) and the
job runner (should a claimed job actually run).
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime

from croniter import croniter

from syncspine.core.models import ConnectorSettings

logger = logging.getLogger(__name__)

_QUARTZ_ONLY = re.compile(r"[#L]|W(?!ED)")
# Quartz numbers weekdays 1-7 from Sunday, crontab 0-6.
_WEEKDAY_NUMBER = re.compile(r"(?<![/\d])([1-7])(?!\d)")


class CronConversionError(ValueError):
    """The expression uses Quartz features crontab cannot express."""


def _check_field(expression: str, value: str) -> None:
    if _QUARTZ_ONLY.search(value.upper()):
        raise CronConversionError(f"Unsupported expression {expression}: '{value}'")


def quartz_to_crontab(expression: str) -> str:
    """Convert a Quartz cron expression to five-field crontab.

    >>> quartz_to_crontab("0 30 2 ? * MON-FRI")
    '30 2 * * MON-FRI'
    >>> quartz_to_crontab("0 0 12 * * 2 2030")
    '0 12 * * 1'
    """
    items = expression.replace("?", "*").split()
    if len(items) == 5:
        return " ".join(items)
    if len(items) not in (6, 7):
        raise CronConversionError(f"Invalid cron expression {expression}")

    minutes, hours, day_of_month, month, day_of_week = items[1:6]
    _check_field(expression, day_of_month)
    _check_field(expression, day_of_week)
    day_of_week = _WEEKDAY_NUMBER.sub(lambda m: str(int(m.group(1)) - 1), day_of_week)

    converted = f"{minutes} {hours} {day_of_month} {month} {day_of_week}"
    logger.debug(
        "Converted Quartz cron expression '%s' to crontab '%s'", expression, converted
    )
    return converted


def next_trigger_time(expression: str, last_run: datetime) -> datetime:
    """Next time the schedule fires after ``last_run``.

    Raises:
        CronConversionError: Quartz-only features or wrong field count.
        ValueError: croniter could not parse the converted expression.
    """
    crontab = quartz_to_crontab(expression)
    if not croniter.is_valid(crontab):
        raise ValueError(f"Invalid cron expression {expression}")
    if last_run.tzinfo is None:
        last_run = last_run.replace(tzinfo=UTC)
    return croniter(crontab, last_run).get_next(datetime)


def is_sync_due(settings: ConnectorSettings, now: datetime | None = None) -> bool:
    now = now or datetime.now(UTC)

    if settings.sync_now:
        logger.info("%s sync is triggered by sync_now flag.", settings.formatted.capitalize())
        return True

    if not settings.scheduling.enabled:
        logger.debug("%s scheduling is disabled.", settings.formatted.capitalize())
        return False

    if settings.last_synced is None:
        logger.info("%s has never synced; sync is due.", settings.formatted.capitalize())
        return True

    interval = (settings.scheduling.interval or "").strip()
    if not interval:
        logger.warning("No sync schedule configured for %s.", settings.formatted)
        return False

    try:
        next_time = next_trigger_time(interval, settings.last_synced)
    except ValueError as e:
        logger.warning(
            "Unable to parse sync schedule '%s' for %s: %s", interval, settings.formatted, e
        )
        return False

    if next_time <= now:
        logger.info(
            "%s sync is triggered by cron schedule %s.",
            settings.formatted.capitalize(),
            interval,
        )
        return True
    return False
