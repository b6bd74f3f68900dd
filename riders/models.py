"""
Purpose: Core data models for the riders domain.
What it does:
Defines the structure of a Rider as the dispatcher sees it: online flag, location
with its freshness timestamp, order load and rolling performance figures.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import FrozenSet, Iterable, Optional, Tuple

LatLng = Tuple[float, float]


@dataclass(frozen=True)
class Rider:
    """
    A stateless snapshot of a rider at a specific point in time.
    Updates produce a new instance via dataclasses.replace.
    """
    id: str
    location: Optional[LatLng]
    is_online: bool = True
    location_updated_at: Optional[datetime] = None

    # Load
    active_order_count: int = 0
    max_concurrent_orders: int = 2

    # Rolling performance; None means no history yet (cold start).
    acceptance_rate: Optional[float] = None
    completion_rate: Optional[float] = None
    average_rating: Optional[float] = None

    # Empty means the rider works every zone.
    zones: FrozenSet[str] = frozenset()
    last_assigned_at: Optional[datetime] = None

    @property
    def spare_capacity(self) -> int:
        return max(0, self.max_concurrent_orders - self.active_order_count)

    @property
    def has_spare_capacity(self) -> bool:
        return self.active_order_count < self.max_concurrent_orders

    def serves_zone(self, zone_id: Optional[str]) -> bool:
        if zone_id is None or not self.zones:
            return True
        return zone_id in self.zones

    @classmethod
    def new(
        cls,
        rider_id: str,
        lat: float,
        lng: float,
        *,
        is_online: bool = True,
        active_order_count: int = 0,
        max_concurrent_orders: int = 2,
        acceptance_rate: Optional[float] = None,
        completion_rate: Optional[float] = None,
        average_rating: Optional[float] = None,
        zones: Iterable[str] = (),
        location_updated_at: Optional[datetime] = None,
        last_assigned_at: Optional[datetime] = None,
    ) -> Rider:
        if max_concurrent_orders < 1:
            raise ValueError("max_concurrent_orders must be >= 1")

        return cls(
            id=rider_id,
            location=(lat, lng),
            is_online=is_online,
            location_updated_at=location_updated_at or datetime.now(timezone.utc),
            active_order_count=active_order_count,
            max_concurrent_orders=max_concurrent_orders,
            acceptance_rate=acceptance_rate,
            completion_rate=completion_rate,
            average_rating=average_rating,
            zones=frozenset(zones),
            last_assigned_at=last_assigned_at,
        )
