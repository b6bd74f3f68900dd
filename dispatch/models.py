"""
Purpose: Value objects produced by the dispatch core.
What it does:
- AssignmentAttempt: one offer-and-response cycle (persisted, append-only)
- OfferPayload: what the rider app is shown when an offer is extended
- CycleStatus / CycleOutcome: view of a dispatch cycle, live and finished
- AssignmentEvent: a completed binding, automatic or manual

Rule: No waiting, no locking here. Models only.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from routing.geo import LatLng
from .exceptions import Conflict


class AttemptOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    SUPERSEDED = "superseded"


class OfferResponse(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class CycleState(str, Enum):
    IDLE = "idle"
    OFFERING = "offering"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


ACTIVE_CYCLE_STATES = (CycleState.IDLE, CycleState.OFFERING)


class AssignmentType(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


@dataclass(frozen=True)
class AssignmentAttempt:
    """
    One offer to one rider. `outcome is None` while the offer is pending.
    Resolving returns a new record; the pending one is never edited.
    """
    id: str
    order_id: str
    rider_id: str
    cycle_id: str
    offered_at: datetime
    outcome: Optional[AttemptOutcome] = None
    responded_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.outcome is None

    def resolve(self, outcome: AttemptOutcome, at: datetime) -> AssignmentAttempt:
        if not self.is_pending:
            raise Conflict(f"Attempt {self.id} already resolved as {self.outcome.value}")
        return replace(self, outcome=outcome, responded_at=at)

    @staticmethod
    def new(order_id: str, rider_id: str, cycle_id: str, offered_at: datetime) -> AssignmentAttempt:
        return AssignmentAttempt(
            id=str(uuid.uuid4()),
            order_id=order_id,
            rider_id=rider_id,
            cycle_id=cycle_id,
            offered_at=offered_at,
        )


@dataclass(frozen=True)
class OfferPayload:
    """
    The "offer extended" event body sent to a candidate rider.
    """
    attempt_id: str
    order_id: str
    pickup: LatLng
    destination: Optional[LatLng]
    distance_to_pickup_km: float
    delivery_distance_km: Optional[float]
    estimated_earnings: float
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "order_id": self.order_id,
            "pickup": {"lat": self.pickup[0], "lng": self.pickup[1]},
            "destination": (
                {"lat": self.destination[0], "lng": self.destination[1]} if self.destination else None
            ),
            "distance_to_pickup_km": round(self.distance_to_pickup_km, 2),
            "delivery_distance_km": (
                round(self.delivery_distance_km, 2) if self.delivery_distance_km is not None else None
            ),
            "estimated_earnings": round(self.estimated_earnings, 2),
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class CycleStatus:
    """
    Read-only snapshot of a dispatch cycle handed back to API callers.
    """
    order_id: str
    cycle_id: str
    state: CycleState
    started_at: datetime
    current_rider_id: Optional[str] = None
    current_attempt_id: Optional[str] = None
    assigned_rider_id: Optional[str] = None
    offered_rider_ids: Tuple[str, ...] = ()
    remaining_candidates: int = 0
    finished_at: Optional[datetime] = None
    end_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_CYCLE_STATES

    @property
    def fallback_required(self) -> bool:
        return self.state == CycleState.EXHAUSTED


@dataclass(frozen=True)
class CycleOutcome:
    """
    Audit record written once when a cycle reaches a terminal state.
    """
    cycle_id: str
    order_id: str
    state: CycleState
    started_at: datetime
    finished_at: datetime
    attempts: int
    assigned_rider_id: Optional[str] = None
    end_reason: Optional[str] = None


@dataclass(frozen=True)
class AssignmentEvent:
    order_id: str
    rider_id: str
    assignment_type: AssignmentType
    assigned_at: datetime
    operator_id: Optional[str] = None
    score: Optional[float] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
