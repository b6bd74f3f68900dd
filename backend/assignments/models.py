from django.db import models

from dispatch.models import (
    AssignmentAttempt,
    AssignmentEvent,
    AssignmentType,
    AttemptOutcome,
    CycleOutcome,
    CycleState,
)


class AppendOnlyModel(models.Model):
    """
    Audit rows are inserted once and never changed or removed.
    """

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError(f"{type(self).__name__} rows are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError(f"{type(self).__name__} rows are append-only")


class AssignmentAttemptRecord(AppendOnlyModel):
    """
    One row per version of an offer: written when it goes out (no outcome)
    and again when it resolves. The newest row for an attempt_id is its state.
    """
    class Outcome(models.TextChoices):
        ACCEPTED = AttemptOutcome.ACCEPTED.value, "Accepted"
        REJECTED = AttemptOutcome.REJECTED.value, "Rejected"
        TIMED_OUT = AttemptOutcome.TIMED_OUT.value, "Timed out"
        SUPERSEDED = AttemptOutcome.SUPERSEDED.value, "Superseded"

    attempt_id = models.CharField(max_length=64, db_index=True)
    order_id = models.CharField(max_length=64, db_index=True)
    rider_id = models.CharField(max_length=64, db_index=True)
    cycle_id = models.CharField(max_length=64)
    offered_at = models.DateTimeField(db_index=True)
    # Empty while the offer is pending
    outcome = models.CharField(max_length=20, choices=Outcome.choices, null=True, blank=True)
    responded_at = models.DateTimeField(null=True, blank=True)
    recorded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "assignment_attempts"
        ordering = ["id"]

    def __str__(self):
        return f"Attempt {self.attempt_id} ({self.outcome or 'pending'})"

    @classmethod
    def from_attempt(cls, attempt: AssignmentAttempt) -> "AssignmentAttemptRecord":
        return cls(
            attempt_id=attempt.id,
            order_id=attempt.order_id,
            rider_id=attempt.rider_id,
            cycle_id=attempt.cycle_id,
            offered_at=attempt.offered_at,
            outcome=attempt.outcome.value if attempt.outcome else None,
            responded_at=attempt.responded_at,
        )

    def to_attempt(self) -> AssignmentAttempt:
        return AssignmentAttempt(
            id=self.attempt_id,
            order_id=self.order_id,
            rider_id=self.rider_id,
            cycle_id=self.cycle_id,
            offered_at=self.offered_at,
            outcome=AttemptOutcome(self.outcome) if self.outcome else None,
            responded_at=self.responded_at,
        )


class CycleOutcomeRecord(AppendOnlyModel):
    class State(models.TextChoices):
        ACCEPTED = CycleState.ACCEPTED.value, "Accepted"
        EXHAUSTED = CycleState.EXHAUSTED.value, "Exhausted"
        CANCELLED = CycleState.CANCELLED.value, "Cancelled"

    cycle_id = models.CharField(max_length=64, unique=True)
    order_id = models.CharField(max_length=64, db_index=True)
    state = models.CharField(max_length=20, choices=State.choices)
    started_at = models.DateTimeField()
    finished_at = models.DateTimeField(db_index=True)
    attempts = models.PositiveIntegerField(default=0)
    assigned_rider_id = models.CharField(max_length=64, null=True, blank=True)
    end_reason = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        db_table = "dispatch_cycle_outcomes"
        ordering = ["id"]

    def __str__(self):
        return f"Cycle {self.cycle_id} for order {self.order_id} - {self.state}"

    @classmethod
    def from_outcome(cls, outcome: CycleOutcome) -> "CycleOutcomeRecord":
        return cls(
            cycle_id=outcome.cycle_id,
            order_id=outcome.order_id,
            state=outcome.state.value,
            started_at=outcome.started_at,
            finished_at=outcome.finished_at,
            attempts=outcome.attempts,
            assigned_rider_id=outcome.assigned_rider_id,
            end_reason=outcome.end_reason or "",
        )

    def to_outcome(self) -> CycleOutcome:
        return CycleOutcome(
            cycle_id=self.cycle_id,
            order_id=self.order_id,
            state=CycleState(self.state),
            started_at=self.started_at,
            finished_at=self.finished_at,
            attempts=self.attempts,
            assigned_rider_id=self.assigned_rider_id,
            end_reason=self.end_reason or None,
        )


class AssignmentEventRecord(AppendOnlyModel):
    """
    A completed binding. Manual rows carry the operator, automatic rows the score.
    """
    class Type(models.TextChoices):
        AUTOMATIC = AssignmentType.AUTOMATIC.value, "Automatic"
        MANUAL = AssignmentType.MANUAL.value, "Manual"

    event_id = models.CharField(max_length=64, unique=True)
    order_id = models.CharField(max_length=64, db_index=True)
    rider_id = models.CharField(max_length=64, db_index=True)
    assignment_type = models.CharField(max_length=20, choices=Type.choices)
    assigned_at = models.DateTimeField(db_index=True)
    operator_id = models.CharField(max_length=64, null=True, blank=True)
    score = models.FloatField(null=True, blank=True)

    class Meta:
        db_table = "assignment_events"
        ordering = ["id"]

    def __str__(self):
        return f"{self.assignment_type} assignment of order {self.order_id} to rider {self.rider_id}"

    @classmethod
    def from_event(cls, event: AssignmentEvent) -> "AssignmentEventRecord":
        return cls(
            event_id=event.id,
            order_id=event.order_id,
            rider_id=event.rider_id,
            assignment_type=event.assignment_type.value,
            assigned_at=event.assigned_at,
            operator_id=event.operator_id,
            score=event.score,
        )

    def to_event(self) -> AssignmentEvent:
        return AssignmentEvent(
            id=self.event_id,
            order_id=self.order_id,
            rider_id=self.rider_id,
            assignment_type=AssignmentType(self.assignment_type),
            assigned_at=self.assigned_at,
            operator_id=self.operator_id,
            score=self.score,
        )
