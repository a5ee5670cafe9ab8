"""Fragmentation analysis for one clinician-day of slots."""

import uuid
from datetime import date

from carebook.scheduling.models import OptimizationReport, Slot, SlotStatus, Suggestion, SuggestionType


class SlotOptimizer:
    """Read-only heuristics that flag fragmented availability.

    Two findings are reported:
    - gaps: available slots lying between two consecutive booked slots,
      which could be closed by consolidating appointments;
    - isolated slots: a single available slot whose neighbours are not
      available, which is hard to book and could be blocked instead.
    """

    def find_gaps(self, slots: list[Slot]) -> list[Suggestion]:
        ordered = sorted(slots, key=lambda s: s.start_time)
        booked_idx = [i for i, s in enumerate(ordered) if s.status == SlotStatus.BOOKED]

        suggestions = []
        for left, right in zip(booked_idx, booked_idx[1:]):
            gap = [s for s in ordered[left + 1 : right] if s.status == SlotStatus.AVAILABLE]
            if gap:
                suggestions.append(
                    Suggestion(
                        type=SuggestionType.GAP,
                        between=[ordered[left].id, ordered[right].id],
                        slot_ids=[s.id for s in gap],
                        suggestion="Consider consolidating appointments to reduce gaps",
                    )
                )
        return suggestions

    def find_isolated(self, slots: list[Slot]) -> list[uuid.UUID]:
        ordered = sorted(slots, key=lambda s: s.start_time)
        isolated = []
        for i, slot in enumerate(ordered):
            if slot.status != SlotStatus.AVAILABLE:
                continue
            prev_free = i > 0 and ordered[i - 1].status == SlotStatus.AVAILABLE
            next_free = i + 1 < len(ordered) and ordered[i + 1].status == SlotStatus.AVAILABLE
            if not prev_free and not next_free:
                isolated.append(slot.id)
        return isolated

    def analyze(self, clinician_id: uuid.UUID, day: date, slots: list[Slot]) -> OptimizationReport:
        """Build the advisory report for one day; never mutates anything."""
        report = OptimizationReport(clinician_id=clinician_id, date=day, total_slots=len(slots))
        if not slots:
            return report

        report.suggestions.extend(self.find_gaps(slots))

        isolated = self.find_isolated(slots)
        if isolated:
            report.suggestions.append(
                Suggestion(
                    type=SuggestionType.ISOLATED,
                    slot_ids=isolated,
                    suggestion="Consider blocking isolated slots to create larger available blocks",
                )
            )

        report.stats = {status.value: 0 for status in SlotStatus}
        for slot in slots:
            report.stats[slot.status.value] += 1
        return report
