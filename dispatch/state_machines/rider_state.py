from dataclasses import replace
from datetime import datetime
from typing import Optional

from riders.models import Rider
from dispatch.exceptions import RiderCapacityExceeded


def handle_rider_acceptance(rider: Rider, at: Optional[datetime] = None) -> Rider:
    """
    Called when a rider is bound to an order (accepted offer or manual override).
    Takes one of the rider's concurrent slots.
    """
    if not rider.has_spare_capacity:
        raise RiderCapacityExceeded(
            f"Rider {rider.id} has no spare capacity. "
            f"Has {rider.active_order_count}/{rider.max_concurrent_orders} active orders"
        )

    # Rider is frozen, so we return a new instance via replace
    return replace(
        rider,
        active_order_count=rider.active_order_count + 1,
        last_assigned_at=at or rider.last_assigned_at,
    )


def handle_rider_release(rider: Rider) -> Rider:
    """
    Called when an order the rider held is delivered or cancelled.
    Frees one slot; never drops below zero.
    """
    return replace(rider, active_order_count=max(0, rider.active_order_count - 1))
