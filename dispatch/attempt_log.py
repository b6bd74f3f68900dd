"""
Purpose: Append-only audit trail for dispatch.
What it does:
- record_assignment_attempt(attempt): appended when an offer is extended and again when it resolves
- record_cycle_outcome(outcome): appended once per finished cycle
- record_assignment_event(event): appended on every binding (automatic or manual)

Readers get the latest version of each attempt; nothing is ever edited in place.

This in-memory log backs the core and the scripts. The HTTP backend persists
the same trail with the Django ORM (backend.assignments.attempt_log).
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from .models import AssignmentAttempt, AssignmentEvent, CycleOutcome


class InMemoryAttemptLog:

    def __init__(self):
        self._lock = threading.Lock()
        self._attempt_entries: List[AssignmentAttempt] = []
        self._latest: Dict[str, AssignmentAttempt] = {}
        self._cycles: List[CycleOutcome] = []
        self._events: List[AssignmentEvent] = []

    # --- Writes ---

    def record_assignment_attempt(self, attempt: AssignmentAttempt) -> None:
        with self._lock:
            self._attempt_entries.append(attempt)
            self._latest[attempt.id] = attempt

    def record_cycle_outcome(self, outcome: CycleOutcome) -> None:
        with self._lock:
            self._cycles.append(outcome)

    def record_assignment_event(self, event: AssignmentEvent) -> None:
        with self._lock:
            self._events.append(event)

    # --- Reads ---

    def get_attempt(self, attempt_id: str) -> Optional[AssignmentAttempt]:
        with self._lock:
            return self._latest.get(attempt_id)

    def attempts(self, order_id: Optional[str] = None) -> List[AssignmentAttempt]:
        """
        Latest version of every attempt, in the order offers were extended.
        """
        with self._lock:
            latest = list(self._latest.values())
        if order_id is not None:
            latest = [a for a in latest if a.order_id == order_id]
        return latest

    def attempt_history(self) -> List[AssignmentAttempt]:
        with self._lock:
            return list(self._attempt_entries)

    def cycle_outcomes(self, order_id: Optional[str] = None) -> List[CycleOutcome]:
        with self._lock:
            outcomes = list(self._cycles)
        if order_id is not None:
            outcomes = [c for c in outcomes if c.order_id == order_id]
        return outcomes

    def assignment_events(self) -> List[AssignmentEvent]:
        with self._lock:
            return list(self._events)
