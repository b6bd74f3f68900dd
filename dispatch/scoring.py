#Purpose: Ranking model (the "who is best" layer).
#Takes an order plus the cycle's rider pool snapshot, drops ineligible riders and
#scores the rest with a weighted sum of:
#distance (closer is better, zero at the edge of the dispatch radius)
#load (more spare slots is better)
#performance (acceptance + completion, neutral 0.5 for new riders)
#rating (optional, weight 0 by default)
#Output: CandidateScore list, best first, deterministic tie-breaking.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from orders.models import Order, OrderStatus
from riders.models import Rider
from riders.policy import DispatchPolicy, default_dispatch_policy
from riders.selection import filter_eligible_riders
from routing.geo import is_valid_coordinate
from .exceptions import InvalidCoordinates, InvalidOrderState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateScore:
    """
    Transient per-cycle score for one rider. Factors are kept for explainability.
    """
    rider_id: str
    order_id: str
    score: float
    distance_km: float
    distance_component: float
    load_component: float
    performance_component: float
    rating_component: float = 0.0
    active_order_count: int = 0
    last_assigned_at: Optional[datetime] = None

    def factors(self) -> Dict[str, float]:
        return {
            "distance": round(self.distance_component, 4),
            "load": round(self.load_component, 4),
            "performance": round(self.performance_component, 4),
            "rating": round(self.rating_component, 4),
        }


def distance_factor(distance_km: float, policy: DispatchPolicy) -> float:
    return max(0.0, 1.0 - distance_km / policy.max_radius_km)


def load_factor(rider: Rider) -> float:
    return 1.0 - (rider.active_order_count / rider.max_concurrent_orders)


def performance_factor(rider: Rider, policy: DispatchPolicy) -> float:
    """
    Blend of acceptance and completion rate. A missing figure counts as the
    cold-start midpoint so a new rider is never starved.
    """
    acceptance = rider.acceptance_rate if rider.acceptance_rate is not None else policy.cold_start_performance
    completion = rider.completion_rate if rider.completion_rate is not None else policy.cold_start_performance
    return 0.5 * acceptance + 0.5 * completion


def rating_factor(rider: Rider, policy: DispatchPolicy) -> float:
    rating = rider.average_rating if rider.average_rating is not None else policy.default_rating
    return min(max(rating / 5.0, 0.0), 1.0)


def _tie_break_key(candidate: CandidateScore):
    # Never-assigned riders count as the longest wait.
    waited_since = candidate.last_assigned_at.timestamp() if candidate.last_assigned_at else float("-inf")
    return (-candidate.score, candidate.active_order_count, waited_since, candidate.rider_id)


def score_candidates(
    order: Order,
    rider_pool: Sequence[Rider],
    policy: Optional[DispatchPolicy] = None,
    now: Optional[datetime] = None,
) -> List[CandidateScore]:
    """
    Score every eligible rider in the pool for this order, best first.
    An empty list is a normal outcome (nobody nearby / everyone busy).
    """
    policy = policy or default_dispatch_policy()
    now = now or datetime.now(timezone.utc)

    if order.status != OrderStatus.READY:
        raise InvalidOrderState(f"Order {order.id} is not READY. Current: {order.status.value}")

    if not is_valid_coordinate(order.restaurant_location):
        raise InvalidCoordinates(f"Order {order.id} has invalid restaurant location {order.restaurant_location}")

    eligible = filter_eligible_riders(order.restaurant_location, list(rider_pool), now, policy)

    scores: List[CandidateScore] = []
    for rider, distance_km in eligible:
        d = distance_factor(distance_km, policy)
        l = load_factor(rider)
        p = performance_factor(rider, policy)
        r = rating_factor(rider, policy)

        total = (
            policy.distance_weight * d
            + policy.load_weight * l
            + policy.performance_weight * p
            + policy.rating_weight * r
        )

        scores.append(
            CandidateScore(
                rider_id=rider.id,
                order_id=order.id,
                score=total,
                distance_km=distance_km,
                distance_component=d,
                load_component=l,
                performance_component=p,
                rating_component=r,
                active_order_count=rider.active_order_count,
                last_assigned_at=rider.last_assigned_at,
            )
        )

    scores.sort(key=_tie_break_key)

    logger.debug(f"Scored {len(scores)}/{len(rider_pool)} riders for order {order.id}")
    return scores
