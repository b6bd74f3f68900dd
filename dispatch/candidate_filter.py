#Purpose: Hard business rules applied after scoring (rule gates).
#Turns the ranked CandidateScore list into the offer queue for one dispatch cycle.
#Responsibilities:
#no re-offer to a rider who already rejected this order in this cycle
#zone membership
#capacity double-check (load is scored, but a full rider is never offered)
#cooldown after a recent rejection (optional)
#cap at max_offer_queue_length to bound dispatch latency

#Output: ordered rider ids to offer, best first. Empty means go straight to manual fallback.

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from orders.models import Order
from riders.models import Rider
from riders.policy import DispatchPolicy, default_dispatch_policy
from .scoring import CandidateScore


def build_offer_queue(
    order: Order,
    scored_candidates: Sequence[CandidateScore],
    policy: Optional[DispatchPolicy] = None,
    *,
    riders: Optional[Mapping[str, Rider]] = None,
    rejected_rider_ids: Iterable[str] = (),
    recent_rejections: Optional[Mapping[str, datetime]] = None,
    now: Optional[datetime] = None,
) -> List[str]:
    """
    `riders` is the pool snapshot keyed by id; when given, zone and capacity
    rules are checked against it. `recent_rejections` maps rider id to the time
    of their last rejection of any order.
    """
    policy = policy or default_dispatch_policy()
    now = now or datetime.now(timezone.utc)
    rejected = set(rejected_rider_ids)
    recent_rejections = recent_rejections or {}
    cooldown = timedelta(seconds=policy.rejection_cooldown_seconds)

    queue: List[str] = []
    for candidate in scored_candidates:
        if len(queue) >= policy.max_offer_queue_length:
            break

        rider_id = candidate.rider_id
        if rider_id in rejected or rider_id in queue:
            continue

        if riders is not None:
            rider = riders.get(rider_id)
            if rider is None:
                continue
            if not rider.serves_zone(order.zone_id):
                continue
            if not rider.has_spare_capacity:
                continue

        if policy.rejection_cooldown_seconds > 0:
            last_rejected_at = recent_rejections.get(rider_id)
            if last_rejected_at is not None and now - last_rejected_at < cooldown:
                continue

        queue.append(rider_id)

    return queue


def pool_by_id(riders: Iterable[Rider]) -> Dict[str, Rider]:
    return {rider.id: rider for rider in riders}
