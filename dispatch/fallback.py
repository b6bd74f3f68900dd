"""
Purpose: Manual assignment fallback (operator override).
What it does:
- Collects orders whose dispatch cycle ran out of candidates, with the ranked
  candidates that were considered, so an operator can pick someone by hand
- assign_manually(): binds an order to a named rider, bypassing the offer
  sequence but never the binding rules (single writer, rider capacity)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from orders.models import Order, OrderStatus
from .exceptions import Conflict, InvalidOrderState, RiderCapacityExceeded
from .models import AssignmentEvent, AssignmentType, CycleStatus
from .scoring import CandidateScore
from .state_machines.binding import bind_order_to_rider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManualQueueItem:
    order_id: str
    cycle_id: str
    queued_at: datetime
    reason: Optional[str]
    offered_rider_ids: Tuple[str, ...]
    candidates: Tuple[CandidateScore, ...]


class ManualAssignmentFallback:

    def __init__(self, dispatcher, clock: Optional[Callable[[], datetime]] = None):
        self.dispatcher = dispatcher
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._queue: Dict[str, ManualQueueItem] = {}

    # --- Escalation intake (wired as the dispatcher's on_exhausted hook) ---

    def on_exhausted(self, status: CycleStatus, candidates: List[CandidateScore]) -> None:
        item = ManualQueueItem(
            order_id=status.order_id,
            cycle_id=status.cycle_id,
            queued_at=self.clock(),
            reason=status.end_reason,
            offered_rider_ids=status.offered_rider_ids,
            candidates=tuple(candidates),
        )
        with self._lock:
            self._queue[status.order_id] = item
        logger.warning(f"Order {status.order_id} queued for manual assignment ({status.end_reason})")

    def pending(self) -> List[ManualQueueItem]:
        with self._lock:
            items = list(self._queue.values())
        return sorted(items, key=lambda item: item.queued_at)

    def discard(self, order_id: str) -> None:
        with self._lock:
            self._queue.pop(order_id, None)

    # --- Operator override ---

    def assign_manually(self, order_id: str, rider_id: str, operator_id: str) -> Order:
        """
        Binds the order to the rider chosen by an operator.
        Any automatic cycle still running for the order is stopped.
        """
        order_store = self.dispatcher.order_store
        rider_store = self.dispatcher.rider_store

        with self.dispatcher.lock_manager.lock(self.dispatcher.lock_key(order_id)):
            order = order_store.get_order(order_id)
            rider = rider_store.get_rider(rider_id)

            if order.status == OrderStatus.RIDER_ASSIGNED:
                raise Conflict(f"Order {order_id} is already assigned to rider {order.rider_id}")
            if order.status != OrderStatus.READY:
                raise InvalidOrderState(f"Order {order_id} is not READY. Current: {order.status.value}")
            if not rider.has_spare_capacity:
                raise RiderCapacityExceeded(
                    f"Rider {rider_id} is at capacity ({rider.active_order_count}/{rider.max_concurrent_orders})"
                )

            now = self.clock()
            assigned = bind_order_to_rider(order_store, rider_store, order_id, rider_id, now)

            # Lock is re-entrant, so the running cycle can be stopped from here.
            self.dispatcher.cancel(order_id, reason=f"manually assigned by {operator_id}")
            self.dispatcher.attempt_log.record_assignment_event(
                AssignmentEvent(
                    order_id=order_id,
                    rider_id=rider_id,
                    assignment_type=AssignmentType.MANUAL,
                    assigned_at=now,
                    operator_id=operator_id,
                )
            )

        self.discard(order_id)
        logger.info(f"Order {order_id} manually assigned to rider {rider_id} by operator {operator_id}")
        return assigned
