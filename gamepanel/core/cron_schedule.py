"""Cron fire-time calculation and due-ness rules for panel schedules.

Schedules carry either a standard 5-field cron expression (minute, hour,
day-of-month, month, day-of-week) or the ``@reboot`` sentinel. ``@reboot``
schedules fire once when the scheduler starts and are never due on a
regular polling tick.

Due-ness is a best-effort heuristic: a schedule is due when its most recent
fire instant lies inside the tolerance window behind "now", unless the
stored ``last_run`` already sits on (or within a few seconds of) that same
instant.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from croniter import croniter

REBOOT_EXPRESSION = "@reboot"
DUE_WINDOW_SECONDS = 65
DEDUPE_SECONDS = 10
_FOLD_STEPS = 4


class InvalidScheduleExpression(ValueError):
    """Raised when a schedule's cron text cannot be evaluated."""


@dataclass(frozen=True)
class DueDecision:
    """Outcome of one due-check for a schedule at a reference instant."""
    due: bool
    previous: datetime | None
    next: datetime | None
    reason: str


def normalize_expression(expression):
    """Collapse whitespace so stored expressions compare and parse consistently."""
    return " ".join(str(expression or "").split())


def is_reboot_expression(expression):
    return normalize_expression(expression).lower() == REBOOT_EXPRESSION


def is_valid_expression(expression):
    """Return whether ``expression`` is ``@reboot`` or a valid 5-field cron."""
    text = normalize_expression(expression)
    if text.lower() == REBOOT_EXPRESSION:
        return True
    if len(text.split(" ")) != 5:
        return False
    try:
        return bool(croniter.is_valid(text))
    except (ValueError, KeyError, TypeError):
        return False


def ensure_aware(value):
    """Treat naive datetimes as UTC so stored and computed instants compare."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def as_utc(value):
    """Aware instant on the UTC timeline; same-zone subtraction ignores ``fold``."""
    return ensure_aware(value).astimezone(timezone.utc)


def fire_times(expression, reference):
    """Return ``(previous, next)`` fire instants around ``reference``.

    ``previous <= reference < next``. For ``@reboot`` the previous instant
    is the reference itself and there is no next instant.
    """
    reference = ensure_aware(reference)
    text = normalize_expression(expression)
    if text.lower() == REBOOT_EXPRESSION:
        return reference, None
    if not is_valid_expression(text):
        raise InvalidScheduleExpression(f"invalid cron expression: {expression!r}")
    # Cron resolution is one minute; stepping back from the minute after the
    # reference makes a fire on the reference minute itself count as previous.
    floor = reference.replace(second=0, microsecond=0)
    anchor = as_utc(reference)
    try:
        previous = croniter(text, floor + timedelta(minutes=1)).get_prev(datetime)
        # Wall-clock stepping can land an hour off inside a DST fold; the
        # bracket must hold on the absolute timeline.
        for _ in range(_FOLD_STEPS):
            if as_utc(previous) <= anchor:
                break
            previous = croniter(text, previous).get_prev(datetime)
        upcoming = croniter(text, reference)
        following = upcoming.get_next(datetime)
        for _ in range(_FOLD_STEPS):
            if as_utc(following) > anchor:
                break
            following = upcoming.get_next(datetime)
    except (ValueError, KeyError) as exc:
        raise InvalidScheduleExpression(f"invalid cron expression: {expression!r}") from exc
    return previous, following


def next_fire_after(expression, reference):
    """Return the first fire instant strictly after ``reference`` (``None`` for ``@reboot``)."""
    return fire_times(expression, reference)[1]


def evaluate_due(
    expression,
    last_run,
    now,
    *,
    window_seconds=DUE_WINDOW_SECONDS,
    dedupe_seconds=DEDUPE_SECONDS,
):
    """Decide whether a polled schedule should fire at ``now``."""
    now = ensure_aware(now)
    if is_reboot_expression(expression):
        return DueDecision(False, None, None, "reboot_only")
    previous, following = fire_times(expression, now)
    age = (as_utc(now) - as_utc(previous)).total_seconds()
    if age < 0 or age >= window_seconds:
        return DueDecision(False, previous, following, "outside_window")
    last_run = ensure_aware(last_run)
    if last_run is not None:
        drift = abs((as_utc(last_run) - as_utc(previous)).total_seconds())
        if drift == 0 or drift < dedupe_seconds:
            return DueDecision(False, previous, following, "already_fired")
    return DueDecision(True, previous, following, "due")
