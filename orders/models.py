"""
Purpose: Domain models for the Orders capability, restricted to what dispatch needs.
What it does:
- Defines the Order structure (id, restaurant coords, destination coords, zone,
  status, assigned rider, timestamps)

Defines enums/constants:
- OrderStatus = ready | rider_assigned | picked_up | on_the_way | delivered | cancelled

Rule: No scoring, no offer logic. Models only.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

LatLng = Tuple[float, float]


class OrderStatus(str, Enum):
    READY = "ready"
    RIDER_ASSIGNED = "rider_assigned"
    PICKED_UP = "picked_up"
    ON_THE_WAY = "on_the_way"
    DELIVERED = "delivered"
    # Set by the order lifecycle when a customer or restaurant cancels.
    CANCELLED = "cancelled"


# Statuses in which the order occupies one of the rider's concurrent slots.
ACTIVE_DELIVERY_STATUSES = (
    OrderStatus.RIDER_ASSIGNED,
    OrderStatus.PICKED_UP,
    OrderStatus.ON_THE_WAY,
)


@dataclass
class Order:
    """
    A single order as seen by the dispatcher.
    """

    id: str
    restaurant_location: Optional[LatLng]
    delivery_location: Optional[LatLng] = None
    zone_id: Optional[str] = None

    status: OrderStatus = OrderStatus.READY
    rider_id: Optional[str] = None

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ready_at: Optional[datetime] = None
    rider_assigned_at: Optional[datetime] = None

    @classmethod
    def new(
        cls,
        order_id: str,
        restaurant_lat: float,
        restaurant_lng: float,
        delivery_lat: Optional[float] = None,
        delivery_lng: Optional[float] = None,
        zone_id: Optional[str] = None,
    ) -> Order:
        now = datetime.now(timezone.utc)
        delivery = None
        if delivery_lat is not None and delivery_lng is not None:
            delivery = (delivery_lat, delivery_lng)

        return cls(
            id=order_id,
            restaurant_location=(restaurant_lat, restaurant_lng),
            delivery_location=delivery,
            zone_id=zone_id,
            created_at=now,
            ready_at=now,
        )
