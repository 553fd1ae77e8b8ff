"""Expansion of availability slots into concrete UTC time windows.

Recurring slots are expanded in the slot's own timezone so that a weekly
09:00 session stays at 09:00 wall-clock across DST changes. The slot's
start/end act as the anchor: the start is the RRULE ``DTSTART`` and the
wall-clock distance between start and end is the length of every instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Iterable, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.rrule import rrule, rrulestr

from app.shared.exceptions import ValidationException
from app.shared.utils import ensure_utc

logger = logging.getLogger(__name__)

MAX_CANDIDATES_PER_PUBLISH = 1000
_FORBIDDEN_RRULE_PARTS = ("DTSTART", "EXDATE", "RDATE", "EXRULE")


class ExpandableSlot(Protocol):
    timezone: str
    start_at: datetime
    end_at: datetime
    rrule: str | None
    exdates: list[datetime] | None


@dataclass(frozen=True, slots=True, order=True)
class Candidate:
    """Proposed occurrence as a half-open UTC interval."""

    start: datetime
    end: datetime


def load_zone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name."""
    if not name or not name.strip():
        raise ValidationException("timezone is required")
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationException(f"Unknown timezone: {name}") from exc


def normalize_rrule(text: str) -> str:
    """Return a single RRULE line without the ``RRULE:`` prefix."""
    value = text.strip()
    if "\n" in value or "\r" in value:
        raise ValidationException("RRULE must be a single rule line")
    if value.upper().startswith("RRULE:"):
        value = value[len("RRULE:"):]
    upper = value.upper()
    for part in _FORBIDDEN_RRULE_PARTS:
        if part in upper:
            raise ValidationException(f"RRULE must not contain {part}; use slot fields instead")
    if "FREQ=" not in upper:
        raise ValidationException("RRULE must define FREQ")
    return value


def parse_rrule(text: str, dtstart_local: datetime) -> rrule:
    """Build a rule anchored at an aware local start."""
    try:
        parsed = rrulestr(normalize_rrule(text), dtstart=dtstart_local)
    except ValidationException:
        raise
    except (ValueError, TypeError) as exc:
        raise ValidationException(f"Invalid RRULE: {exc}") from exc
    if not isinstance(parsed, rrule):
        raise ValidationException("RRULE must describe a single rule")
    return parsed


def resolve_window(now: datetime, horizon_days: int) -> tuple[datetime, datetime]:
    """Publish window ``[now, now + horizon_days]`` in UTC."""
    if horizon_days < 1:
        raise ValidationException("publish horizon must be at least one day")
    start = ensure_utc(now)
    return start, start + timedelta(days=horizon_days)


def expand_local(
    rrule_text: str,
    timezone: str,
    anchor_start_local: datetime,
    anchor_end_local: datetime,
    window: tuple[datetime, datetime],
) -> list[tuple[datetime, datetime]]:
    """Expand a rule into local wall-clock (start, end) pairs whose start lies in the window.

    Anchors are aware datetimes in ``timezone``; the window bounds may be in any zone.
    """
    zone = load_zone(timezone)
    start_local = anchor_start_local.astimezone(zone)
    end_local = anchor_end_local.astimezone(zone)
    # Same-tzinfo subtraction is wall-clock arithmetic.
    duration = end_local.replace(tzinfo=None) - start_local.replace(tzinfo=None)

    rule = parse_rrule(rrule_text, start_local)
    window_start, window_end = window

    pairs: list[tuple[datetime, datetime]] = []
    for instance_start in rule.xafter(window_start, count=MAX_CANDIDATES_PER_PUBLISH + 1, inc=True):
        if instance_start > window_end:
            break
        if len(pairs) >= MAX_CANDIDATES_PER_PUBLISH:
            logger.warning(
                "RRULE %r yields more than %s occurrences before %s, truncated at %s",
                rrule_text,
                MAX_CANDIDATES_PER_PUBLISH,
                window_end.isoformat(),
                pairs[-1][0].isoformat(),
            )
            break
        pairs.append((instance_start, instance_start + duration))
    return pairs


def _to_utc(local_value: datetime, zone: ZoneInfo) -> datetime:
    return local_value.replace(tzinfo=zone).astimezone(UTC)


def expand_slot(slot: ExpandableSlot, window: tuple[datetime, datetime]) -> list[Candidate]:
    """Turn a slot into sorted UTC candidates inside the publish window.

    Instances matching an exclusion date (compared as UTC instants) are dropped,
    as are instances whose end is not after their start.
    """
    window_start, window_end = (ensure_utc(window[0]), ensure_utc(window[1]))
    start_at = ensure_utc(slot.start_at)
    end_at = ensure_utc(slot.end_at)

    if not slot.rrule:
        if end_at <= start_at or not window_start <= start_at <= window_end:
            return []
        return [Candidate(start=start_at, end=end_at)]

    zone = load_zone(slot.timezone)
    excluded = {ensure_utc(value) for value in (slot.exdates or [])}
    candidates: list[Candidate] = []
    for local_start, local_end in expand_local(
        slot.rrule,
        slot.timezone,
        start_at.astimezone(zone),
        end_at.astimezone(zone),
        (window_start, window_end),
    ):
        start_utc = local_start.astimezone(UTC)
        end_utc = local_end.astimezone(UTC)
        if end_utc <= start_utc or start_utc in excluded:
            continue
        if not window_start <= start_utc <= window_end:
            continue
        candidates.append(Candidate(start=start_utc, end=end_utc))
    return sorted(set(candidates))


def footprint(
    start: datetime,
    end: datetime,
    buffer_before_min: int,
    buffer_after_min: int,
) -> tuple[datetime, datetime]:
    """Occupied range of an occurrence including its slot's buffers."""
    return (
        start - timedelta(minutes=buffer_before_min),
        end + timedelta(minutes=buffer_after_min),
    )


def normalize_exdates(values: Iterable[datetime], timezone: str) -> list[datetime]:
    """Store exclusion dates as UTC instants; naive values are read as slot-local time."""
    zone = load_zone(timezone)
    normalized: set[datetime] = set()
    for value in values:
        if value.tzinfo is None:
            normalized.add(_to_utc(value, zone))
        else:
            normalized.add(value.astimezone(UTC))
    return sorted(normalized)
