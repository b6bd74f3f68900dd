"""
Purpose: Offline reporting over the dispatch audit trail.
What it does:
- get_assignment_analytics(time_range): time-to-accept, rejection / timeout / fallback
  rates and assignment counts for a window
- rider_acceptance_rates(time_range): per-rider acceptance rates, fed back into
  rider profiles by a batch job

Read-only: nothing here touches orders, riders or live cycles.
Used for tuning weights and timeouts, never for real-time decisions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pandas as pd

from .models import AttemptOutcome, AssignmentType, CycleState

logger = logging.getLogger(__name__)

TIME_RANGE_PRESETS = ("day", "week", "month")

# Outcomes that reflect what the rider did with the offer
RIDER_DECIDED_OUTCOMES = (
    AttemptOutcome.ACCEPTED.value,
    AttemptOutcome.REJECTED.value,
    AttemptOutcome.TIMED_OUT.value,
)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TimeRange:
    """
    Closed window [start, end] in UTC.
    """
    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, "start", _as_utc(self.start))
        object.__setattr__(self, "end", _as_utc(self.end))
        if self.start > self.end:
            raise ValueError("time range start must not be after its end")

    @classmethod
    def preset(cls, name: str, now: Optional[datetime] = None) -> TimeRange:
        """
        day: since UTC midnight. week: last 7 days. month: last calendar month.
        """
        now = _as_utc(now or datetime.now(timezone.utc))
        if name == "day":
            start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        elif name == "week":
            start = now - timedelta(days=7)
        elif name == "month":
            start = (pd.Timestamp(now) - pd.DateOffset(months=1)).to_pydatetime()
        else:
            raise ValueError(f"Unknown time range {name!r}. Use one of {', '.join(TIME_RANGE_PRESETS)}")
        return cls(start=start, end=now)


@dataclass(frozen=True)
class AssignmentReport:
    time_range: TimeRange
    average_time_to_accept: Optional[float]
    rejection_rate: float
    timeout_rate: float
    fallback_rate: float
    total_assignments: int
    automatic_assignments: int = 0
    manual_assignments: int = 0
    total_attempts: int = 0
    total_cycles: int = 0
    top_riders: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timeRange": {
                "start": self.time_range.start.isoformat(),
                "end": self.time_range.end.isoformat(),
            },
            "averageTimeToAccept": (
                round(self.average_time_to_accept, 3) if self.average_time_to_accept is not None else None
            ),
            "rejectionRate": round(self.rejection_rate, 4),
            "timeoutRate": round(self.timeout_rate, 4),
            "fallbackRate": round(self.fallback_rate, 4),
            "totalAssignments": self.total_assignments,
            "automaticAssignments": self.automatic_assignments,
            "manualAssignments": self.manual_assignments,
            "totalAttempts": self.total_attempts,
            "totalCycles": self.total_cycles,
            "topRiders": self.top_riders,
        }


def _rate(mask: pd.Series) -> float:
    if mask.empty:
        return 0.0
    return float(mask.mean())


class AssignmentAnalytics:

    def __init__(self, attempt_log, top_riders_limit: int = 5):
        self.attempt_log = attempt_log
        self.top_riders_limit = top_riders_limit

    # --- Frames ---

    def _attempts_frame(self, time_range: TimeRange) -> pd.DataFrame:
        columns = ["attempt_id", "order_id", "rider_id", "outcome", "offered_at", "responded_at"]
        df = pd.DataFrame(
            [
                {
                    "attempt_id": a.id,
                    "order_id": a.order_id,
                    "rider_id": a.rider_id,
                    "outcome": a.outcome.value if a.outcome else None,
                    "offered_at": a.offered_at,
                    "responded_at": a.responded_at,
                }
                for a in self.attempt_log.attempts()
            ],
            columns=columns,
        )
        if df.empty:
            return df

        df["offered_at"] = pd.to_datetime(df["offered_at"], utc=True)
        df["responded_at"] = pd.to_datetime(df["responded_at"], utc=True)
        return df[df["offered_at"].between(pd.Timestamp(time_range.start), pd.Timestamp(time_range.end))]

    def _cycles_frame(self, time_range: TimeRange) -> pd.DataFrame:
        df = pd.DataFrame(
            [{"cycle_id": c.cycle_id, "state": c.state.value, "finished_at": c.finished_at}
             for c in self.attempt_log.cycle_outcomes()],
            columns=["cycle_id", "state", "finished_at"],
        )
        if df.empty:
            return df

        df["finished_at"] = pd.to_datetime(df["finished_at"], utc=True)
        return df[df["finished_at"].between(pd.Timestamp(time_range.start), pd.Timestamp(time_range.end))]

    def _events_frame(self, time_range: TimeRange) -> pd.DataFrame:
        df = pd.DataFrame(
            [{"rider_id": e.rider_id, "assignment_type": e.assignment_type.value, "assigned_at": e.assigned_at}
             for e in self.attempt_log.assignment_events()],
            columns=["rider_id", "assignment_type", "assigned_at"],
        )
        if df.empty:
            return df

        df["assigned_at"] = pd.to_datetime(df["assigned_at"], utc=True)
        return df[df["assigned_at"].between(pd.Timestamp(time_range.start), pd.Timestamp(time_range.end))]

    # --- Reports ---

    def get_assignment_analytics(self, time_range: TimeRange) -> AssignmentReport:
        attempts = self._attempts_frame(time_range)
        cycles = self._cycles_frame(time_range)
        events = self._events_frame(time_range)

        # Superseded attempts say nothing about the rider and stay out of the rates.
        resolved = attempts[attempts["outcome"].isin(RIDER_DECIDED_OUTCOMES)]

        accepted = resolved[resolved["outcome"] == AttemptOutcome.ACCEPTED.value]
        average_time_to_accept = None
        if not accepted.empty:
            waits = (accepted["responded_at"] - accepted["offered_at"]).dt.total_seconds()
            average_time_to_accept = float(waits.mean())

        decided_cycles = cycles[cycles["state"].isin([CycleState.ACCEPTED.value, CycleState.EXHAUSTED.value])]
        fallback_rate = _rate(decided_cycles["state"] == CycleState.EXHAUSTED.value)

        by_type = events["assignment_type"].value_counts()

        report = AssignmentReport(
            time_range=time_range,
            average_time_to_accept=average_time_to_accept,
            rejection_rate=_rate(resolved["outcome"] == AttemptOutcome.REJECTED.value),
            timeout_rate=_rate(resolved["outcome"] == AttemptOutcome.TIMED_OUT.value),
            fallback_rate=fallback_rate,
            total_assignments=len(events),
            automatic_assignments=int(by_type.get(AssignmentType.AUTOMATIC.value, 0)),
            manual_assignments=int(by_type.get(AssignmentType.MANUAL.value, 0)),
            total_attempts=len(attempts),
            total_cycles=len(cycles),
            top_riders=self._top_riders(events),
        )
        logger.debug(f"Assignment analytics {time_range.start} -> {time_range.end}: {report.to_dict()}")
        return report

    def _top_riders(self, events: pd.DataFrame) -> List[Dict[str, Any]]:
        if events.empty:
            return []
        counts = events.groupby("rider_id").size().reset_index(name="assignments")
        counts = counts.sort_values(["assignments", "rider_id"], ascending=[False, True]).head(self.top_riders_limit)
        return [
            {"riderId": rider_id, "assignments": int(n)}
            for rider_id, n in zip(counts["rider_id"], counts["assignments"])
        ]

    def rider_acceptance_rates(self, time_range: TimeRange) -> Dict[str, float]:
        """
        accepted / (accepted + rejected + timed_out) per rider.
        Superseded attempts are not the rider's doing and are left out.
        """
        attempts = self._attempts_frame(time_range)
        decided = attempts[attempts["outcome"].isin(RIDER_DECIDED_OUTCOMES)]
        if decided.empty:
            return {}

        rates = (decided["outcome"] == AttemptOutcome.ACCEPTED.value).groupby(decided["rider_id"]).mean()
        return {rider_id: float(rate) for rider_id, rate in rates.items()}
