"""Overlap detection between buffered occurrence footprints."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from app.modules.scheduling.recurrence import Candidate, footprint


@dataclass(frozen=True, slots=True)
class ExistingOccurrence:
    """Snapshot of a non-cancelled occurrence and the current buffers of its slot."""

    occurrence_id: UUID
    slot_id: UUID
    slot_title: str
    start: datetime
    end: datetime
    buffer_before_min: int
    buffer_after_min: int

    @property
    def footprint(self) -> tuple[datetime, datetime]:
        return footprint(self.start, self.end, self.buffer_before_min, self.buffer_after_min)


@dataclass(frozen=True, slots=True)
class Conflict:
    """Candidate rejected because it overlaps an existing occurrence or an earlier candidate."""

    candidate: Candidate
    existing: ExistingOccurrence | None = None
    batch_candidate: Candidate | None = None

    def as_detail(self) -> dict:
        detail: dict = {
            "candidate_start": self.candidate.start.isoformat(),
            "candidate_end": self.candidate.end.isoformat(),
        }
        if self.existing is not None:
            detail.update(
                occurrence_id=str(self.existing.occurrence_id),
                slot_id=str(self.existing.slot_id),
                slot_title=self.existing.slot_title,
                start=self.existing.start.isoformat(),
                end=self.existing.end.isoformat(),
                buffer_before_min=self.existing.buffer_before_min,
                buffer_after_min=self.existing.buffer_after_min,
            )
        if self.batch_candidate is not None:
            detail.update(
                batch_start=self.batch_candidate.start.isoformat(),
                batch_end=self.batch_candidate.end.isoformat(),
            )
        return detail


@dataclass(slots=True)
class Selection:
    accepted: list[Candidate]
    conflicts: list[Conflict]

    @property
    def skipped_conflict(self) -> int:
        return len(self.conflicts)


def overlaps(a: tuple[datetime, datetime], b: tuple[datetime, datetime]) -> bool:
    """Half-open interval intersection: ``[a0, a1)`` meets ``[b0, b1)``."""
    return a[0] < b[1] and b[0] < a[1]


def _first_existing_overlap(
    candidate_footprint: tuple[datetime, datetime],
    existing: list[ExistingOccurrence],
) -> ExistingOccurrence | None:
    for occurrence in existing:
        if overlaps(candidate_footprint, occurrence.footprint):
            return occurrence
    return None


def find_conflicts(
    candidates: list[Candidate],
    existing: list[ExistingOccurrence],
    buffer_before_min: int,
    buffer_after_min: int,
) -> list[Conflict]:
    """Report every candidate that overlaps any existing occurrence, one entry per pair."""
    conflicts: list[Conflict] = []
    for candidate in candidates:
        candidate_footprint = footprint(candidate.start, candidate.end, buffer_before_min, buffer_after_min)
        for occurrence in existing:
            if overlaps(candidate_footprint, occurrence.footprint):
                conflicts.append(Conflict(candidate=candidate, existing=occurrence))
    return conflicts


def select_candidates(
    candidates: list[Candidate],
    existing: list[ExistingOccurrence],
    buffer_before_min: int,
    buffer_after_min: int,
) -> Selection:
    """Keep candidates that overlap neither existing occurrences nor candidates accepted before them."""
    accepted: list[Candidate] = []
    accepted_footprints: list[tuple[datetime, datetime]] = []
    conflicts: list[Conflict] = []

    for candidate in sorted(candidates):
        candidate_footprint = footprint(candidate.start, candidate.end, buffer_before_min, buffer_after_min)

        clash = _first_existing_overlap(candidate_footprint, existing)
        if clash is not None:
            conflicts.append(Conflict(candidate=candidate, existing=clash))
            continue

        batch_clash = next(
            (
                accepted[index]
                for index, accepted_footprint in enumerate(accepted_footprints)
                if overlaps(candidate_footprint, accepted_footprint)
            ),
            None,
        )
        if batch_clash is not None:
            conflicts.append(Conflict(candidate=candidate, batch_candidate=batch_clash))
            continue

        accepted.append(candidate)
        accepted_footprints.append(candidate_footprint)

    return Selection(accepted=accepted, conflicts=conflicts)
