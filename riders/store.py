"""
Purpose: In-memory stand-in for the rider profile store.
What it does:
- Hands out pool snapshots for a dispatch cycle
- Applies the rider's own location / online updates
- Applies the active-order-count changes made by dispatch, atomically

Rule: Capacity checks for a bind happen inside the store lock, so two orders
accepted by the same rider at the same time cannot both take the last slot.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from dispatch.exceptions import InvalidCoordinates, RiderNotFound
from dispatch.state_machines.rider_state import handle_rider_acceptance, handle_rider_release
from routing.geo import is_valid_coordinate
from .models import Rider
from .selection import RiderPoolCriteria, matches_criteria

logger = logging.getLogger(__name__)


class InMemoryRiderStore:

    def __init__(self, riders: Optional[List[Rider]] = None):
        self._lock = threading.Lock()
        self._riders: Dict[str, Rider] = {}
        for rider in riders or []:
            self.upsert(rider)

    def upsert(self, rider: Rider) -> None:
        with self._lock:
            self._riders[rider.id] = rider

    def get_rider(self, rider_id: str) -> Rider:
        with self._lock:
            rider = self._riders.get(rider_id)
        if rider is None:
            raise RiderNotFound(f"Rider {rider_id} not found")
        return rider

    def all_riders(self) -> List[Rider]:
        with self._lock:
            return list(self._riders.values())

    def get_eligible_rider_pool(self, criteria: Optional[RiderPoolCriteria] = None) -> List[Rider]:
        """
        Snapshot of riders matching the coarse criteria.
        The returned list is never mutated by later updates.
        """
        criteria = criteria or RiderPoolCriteria()
        with self._lock:
            return [r for r in self._riders.values() if matches_criteria(r, criteria)]

    # --- Dispatch writes ---

    def update_rider_active_order_count(self, rider_id: str, delta: int, *, at: Optional[datetime] = None) -> Rider:
        if delta not in (1, -1):
            raise ValueError("delta must be +1 or -1")

        with self._lock:
            rider = self._riders.get(rider_id)
            if rider is None:
                raise RiderNotFound(f"Rider {rider_id} not found")

            if delta > 0:
                updated = handle_rider_acceptance(rider, at=at or datetime.now(timezone.utc))
            else:
                updated = handle_rider_release(rider)
            self._riders[rider_id] = updated

        logger.debug(f"Rider {rider_id} active orders {rider.active_order_count} -> {updated.active_order_count}")
        return updated

    def update_acceptance_rates(self, rates: Dict[str, float]) -> int:
        """
        Batch refresh of rolling acceptance rates. Unknown riders are skipped.
        Returns how many riders were updated.
        """
        updated = 0
        with self._lock:
            for rider_id, rate in rates.items():
                rider = self._riders.get(rider_id)
                if rider is None:
                    continue
                self._riders[rider_id] = replace(rider, acceptance_rate=float(rate))
                updated += 1
        return updated

    # --- Rider self-reported updates ---

    def update_location(self, rider_id: str, lat: float, lng: float, *, at: Optional[datetime] = None) -> Rider:
        if not is_valid_coordinate((lat, lng)):
            raise InvalidCoordinates(f"Invalid coordinates for rider {rider_id}: ({lat}, {lng})")

        with self._lock:
            rider = self._riders.get(rider_id)
            if rider is None:
                raise RiderNotFound(f"Rider {rider_id} not found")
            updated = replace(
                rider,
                location=(float(lat), float(lng)),
                location_updated_at=at or datetime.now(timezone.utc),
            )
            self._riders[rider_id] = updated
            return updated

    def set_online(self, rider_id: str, is_online: bool) -> Rider:
        with self._lock:
            rider = self._riders.get(rider_id)
            if rider is None:
                raise RiderNotFound(f"Rider {rider_id} not found")
            updated = replace(rider, is_online=is_online)
            self._riders[rider_id] = updated
            return updated
