"""
Purpose: The dispatch audit trail, persisted with the Django ORM.
What it does:
Same interface as dispatch.attempt_log.InMemoryAttemptLog, so the dispatcher,
manual fallback and analytics run unchanged on top of it:
- record_assignment_attempt / record_cycle_outcome / record_assignment_event insert rows
- get_attempt / attempts / attempt_history / cycle_outcomes / assignment_events read them back
Rows are only ever inserted (see AppendOnlyModel), so history survives restarts
and the analytics report covers every process that wrote to the database.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from dispatch.models import AssignmentAttempt, AssignmentEvent, CycleOutcome
from .models import AssignmentAttemptRecord, AssignmentEventRecord, CycleOutcomeRecord


class DjangoAttemptLog:

    # --- Writes ---

    def record_assignment_attempt(self, attempt: AssignmentAttempt) -> None:
        AssignmentAttemptRecord.from_attempt(attempt).save()

    def record_cycle_outcome(self, outcome: CycleOutcome) -> None:
        CycleOutcomeRecord.from_outcome(outcome).save()

    def record_assignment_event(self, event: AssignmentEvent) -> None:
        AssignmentEventRecord.from_event(event).save()

    # --- Reads ---

    def get_attempt(self, attempt_id: str) -> Optional[AssignmentAttempt]:
        row = AssignmentAttemptRecord.objects.filter(attempt_id=attempt_id).order_by("-id").first()
        return row.to_attempt() if row is not None else None

    def attempts(self, order_id: Optional[str] = None) -> List[AssignmentAttempt]:
        """
        Latest version of every attempt, in the order offers were extended.
        """
        rows = AssignmentAttemptRecord.objects.all()
        if order_id is not None:
            rows = rows.filter(order_id=order_id)

        # Later rows replace earlier ones but keep the first row's position.
        latest: Dict[str, AssignmentAttemptRecord] = {}
        for row in rows.iterator():
            latest[row.attempt_id] = row
        return [row.to_attempt() for row in latest.values()]

    def attempt_history(self) -> List[AssignmentAttempt]:
        return [row.to_attempt() for row in AssignmentAttemptRecord.objects.all()]

    def cycle_outcomes(self, order_id: Optional[str] = None) -> List[CycleOutcome]:
        rows = CycleOutcomeRecord.objects.all()
        if order_id is not None:
            rows = rows.filter(order_id=order_id)
        return [row.to_outcome() for row in rows]

    def assignment_events(self) -> List[AssignmentEvent]:
        return [row.to_event() for row in AssignmentEventRecord.objects.all()]
