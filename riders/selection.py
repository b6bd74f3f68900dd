"""
Purpose: Eligibility rules for deciding which riders may be scored for an order.
What it does:
Accepts a pickup location and a pool of riders, and drops anyone who is offline,
full, has a stale location, or sits outside the dispatch radius.
Riders failing a rule are excluded outright, never scored with a penalty.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from routing.geo import LatLng, haversine_km, is_valid_coordinate
from .models import Rider
from .policy import DispatchPolicy, default_dispatch_policy


@dataclass(frozen=True)
class RiderPoolCriteria:
    """
    Coarse filter handed to the rider store when fetching the pool snapshot.
    """
    fresh_since: Optional[datetime] = None
    online_only: bool = True
    with_spare_capacity: bool = True


def is_location_fresh(rider: Rider, now: datetime, freshness_seconds: float) -> bool:
    if rider.location_updated_at is None:
        return False
    return now - rider.location_updated_at <= timedelta(seconds=freshness_seconds)


def matches_criteria(rider: Rider, criteria: RiderPoolCriteria) -> bool:
    if criteria.online_only and not rider.is_online:
        return False

    if criteria.with_spare_capacity and not rider.has_spare_capacity:
        return False

    if criteria.fresh_since is not None:
        if rider.location_updated_at is None or rider.location_updated_at < criteria.fresh_since:
            return False

    return True


def filter_eligible_riders(
    pickup_location: LatLng,
    riders: List[Rider],
    now: datetime,
    policy: Optional[DispatchPolicy] = None,
) -> List[Tuple[Rider, float]]:
    """
    Returns (rider, distance_km) pairs for every rider who is online, has a spare
    slot, reported a fresh location and is inside the max dispatch radius.
    """
    policy = policy or default_dispatch_policy()
    eligible = []

    for rider in riders:
        if not rider.is_online:
            continue

        if not rider.has_spare_capacity:
            continue

        if not is_location_fresh(rider, now, policy.location_freshness_seconds):
            continue

        if not is_valid_coordinate(rider.location):
            continue

        distance_km = haversine_km(rider.location, pickup_location)
        if distance_km > policy.max_radius_km:
            continue

        eligible.append((rider, distance_km))

    return eligible
