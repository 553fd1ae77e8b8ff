from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from app.modules.scheduling.recurrence import (
    MAX_CANDIDATES_PER_PUBLISH,
    Candidate,
    expand_slot,
    normalize_exdates,
    normalize_rrule,
    resolve_window,
)
from app.shared.exceptions import ValidationException


def make_slot(
    *,
    start_at: datetime,
    end_at: datetime,
    rrule: str | None = None,
    timezone: str = "UTC",
    exdates: list[datetime] | None = None,
) -> SimpleNamespace:
    return SimpleNamespace(
        timezone=timezone,
        start_at=start_at,
        end_at=end_at,
        rrule=rrule,
        exdates=exdates or [],
    )


def test_weekly_rule_expands_inside_horizon_only() -> None:
    now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    slot = make_slot(
        start_at=datetime(2026, 3, 2, 9, 0, tzinfo=UTC),
        end_at=datetime(2026, 3, 2, 10, 0, tzinfo=UTC),
        rrule="FREQ=WEEKLY",
    )

    candidates = expand_slot(slot, resolve_window(now, 14))

    assert candidates == [
        Candidate(datetime(2026, 3, 2, 9, 0, tzinfo=UTC), datetime(2026, 3, 2, 10, 0, tzinfo=UTC)),
        Candidate(datetime(2026, 3, 9, 9, 0, tzinfo=UTC), datetime(2026, 3, 9, 10, 0, tzinfo=UTC)),
    ]


def test_weekly_rule_keeps_wall_clock_time_across_dst_change() -> None:
    now = datetime(2026, 3, 1, 0, 0, tzinfo=UTC)
    # 09:00 EST; clocks in New York move forward on 2026-03-08.
    slot = make_slot(
        start_at=datetime(2026, 3, 2, 14, 0, tzinfo=UTC),
        end_at=datetime(2026, 3, 2, 15, 0, tzinfo=UTC),
        rrule="RRULE:FREQ=WEEKLY;COUNT=3",
        timezone="America/New_York",
    )

    candidates = expand_slot(slot, resolve_window(now, 30))

    assert [candidate.start for candidate in candidates] == [
        datetime(2026, 3, 2, 14, 0, tzinfo=UTC),
        datetime(2026, 3, 9, 13, 0, tzinfo=UTC),
        datetime(2026, 3, 16, 13, 0, tzinfo=UTC),
    ]
    assert all(candidate.end - candidate.start == timedelta(hours=1) for candidate in candidates)


def test_exdates_remove_matching_instances() -> None:
    now = datetime(2026, 3, 1, 0, 0, tzinfo=UTC)
    slot = make_slot(
        start_at=datetime(2026, 3, 2, 9, 0, tzinfo=UTC),
        end_at=datetime(2026, 3, 2, 10, 0, tzinfo=UTC),
        rrule="FREQ=DAILY;COUNT=3",
        exdates=[datetime(2026, 3, 3, 9, 0, tzinfo=UTC)],
    )

    candidates = expand_slot(slot, resolve_window(now, 10))

    assert [candidate.start.day for candidate in candidates] == [2, 4]


def test_one_off_slot_outside_window_yields_nothing() -> None:
    now = datetime(2026, 3, 1, 0, 0, tzinfo=UTC)
    slot = make_slot(
        start_at=datetime(2026, 6, 1, 9, 0, tzinfo=UTC),
        end_at=datetime(2026, 6, 1, 10, 0, tzinfo=UTC),
    )

    assert expand_slot(slot, resolve_window(now, 30)) == []
    assert len(expand_slot(slot, resolve_window(now, 120))) == 1


def test_dense_rule_is_truncated_at_the_cap(caplog: pytest.LogCaptureFixture) -> None:
    now = datetime(2026, 3, 1, 0, 0, tzinfo=UTC)
    slot = make_slot(
        start_at=datetime(2026, 3, 1, 1, 0, tzinfo=UTC),
        end_at=datetime(2026, 3, 1, 1, 30, tzinfo=UTC),
        rrule="FREQ=HOURLY",
    )

    with caplog.at_level("WARNING", logger="app.modules.scheduling.recurrence"):
        candidates = expand_slot(slot, resolve_window(now, 90))

    assert len(candidates) == MAX_CANDIDATES_PER_PUBLISH
    assert candidates[0].start == datetime(2026, 3, 1, 1, 0, tzinfo=UTC)
    assert candidates[-1].start == candidates[0].start + timedelta(hours=MAX_CANDIDATES_PER_PUBLISH - 1)
    assert "truncated" in caplog.text


@pytest.mark.parametrize(
    "value",
    [
        "DTSTART:20260301T090000Z\nRRULE:FREQ=DAILY",
        "FREQ=DAILY;EXDATE=20260302",
        "INTERVAL=2",
    ],
)
def test_normalize_rrule_rejects_unsupported_rules(value: str) -> None:
    with pytest.raises(ValidationException):
        normalize_rrule(value)


def test_normalize_rrule_strips_prefix() -> None:
    assert normalize_rrule(" RRULE:FREQ=WEEKLY;BYDAY=MO ") == "FREQ=WEEKLY;BYDAY=MO"


def test_naive_exdates_are_read_as_slot_local_time() -> None:
    normalized = normalize_exdates(
        [datetime(2026, 3, 9, 9, 0), datetime(2026, 3, 9, 13, 0, tzinfo=UTC)],
        "America/New_York",
    )

    assert normalized == [datetime(2026, 3, 9, 13, 0, tzinfo=UTC)]


def test_unknown_timezone_is_rejected() -> None:
    slot = make_slot(
        start_at=datetime(2026, 3, 2, 9, 0, tzinfo=UTC),
        end_at=datetime(2026, 3, 2, 10, 0, tzinfo=UTC),
        rrule="FREQ=DAILY",
        timezone="Mars/Olympus",
    )

    with pytest.raises(ValidationException):
        expand_slot(slot, resolve_window(datetime(2026, 3, 1, tzinfo=UTC), 5))
