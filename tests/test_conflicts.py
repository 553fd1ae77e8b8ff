from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from app.modules.scheduling.conflicts import (
    ExistingOccurrence,
    find_conflicts,
    overlaps,
    select_candidates,
)
from app.modules.scheduling.recurrence import Candidate


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 3, 2, hour, minute, tzinfo=UTC)


def make_existing(start: datetime, end: datetime, *, before: int = 0, after: int = 0) -> ExistingOccurrence:
    return ExistingOccurrence(
        occurrence_id=uuid4(),
        slot_id=uuid4(),
        slot_title="Existing",
        start=start,
        end=end,
        buffer_before_min=before,
        buffer_after_min=after,
    )


def test_touching_intervals_do_not_overlap() -> None:
    assert overlaps((at(9), at(10)), (at(10), at(11))) is False
    assert overlaps((at(9), at(10, 1)), (at(10), at(11))) is True


def test_candidate_buffer_reaches_existing_occurrence() -> None:
    existing = [make_existing(at(10), at(11))]
    candidate = Candidate(at(9), at(10))

    assert find_conflicts([candidate], existing, 0, 0) == []

    conflicts = find_conflicts([candidate], existing, 0, 10)
    assert len(conflicts) == 1
    assert conflicts[0].existing == existing[0]


def test_existing_buffer_counts_against_candidate() -> None:
    existing = [make_existing(at(10), at(11), after=15)]

    conflicts = find_conflicts([Candidate(at(11, 10), at(12))], existing, 0, 0)

    assert len(conflicts) == 1
    detail = conflicts[0].as_detail()
    assert detail["buffer_after_min"] == 15
    assert detail["slot_title"] == "Existing"


def test_select_candidates_skips_existing_and_batch_overlaps() -> None:
    existing = [make_existing(at(8), at(9))]
    candidates = [
        Candidate(at(8, 30), at(9, 30)),
        Candidate(at(10), at(11)),
        Candidate(at(10, 30), at(11, 30)),
        Candidate(at(12), at(13)),
    ]

    selection = select_candidates(candidates, existing, 0, 0)

    assert selection.accepted == [Candidate(at(10), at(11)), Candidate(at(12), at(13))]
    assert selection.skipped_conflict == 2
    assert selection.conflicts[0].existing == existing[0]
    assert selection.conflicts[1].batch_candidate == Candidate(at(10), at(11))


def test_find_conflicts_reports_every_overlapping_pair() -> None:
    existing = [make_existing(at(9), at(10)), make_existing(at(10), at(11))]

    conflicts = find_conflicts([Candidate(at(9, 30), at(10, 30))], existing, 0, 0)

    assert len(conflicts) == 2
