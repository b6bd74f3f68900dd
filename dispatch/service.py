"""
Purpose: The one object the outside world talks to.
What it does:
Wires stores, notifier, dispatcher, manual fallback and analytics together and
exposes the operations the HTTP layer (and scripts) call:

- dispatch(order_id) / dispatch_status(order_id)
- respond_to_offer(attempt_id, rider_id, response)
- manual_assign(order_id, rider_id, operator_id)
- assignment_analytics(time_range)

plus the order progress / rider self-service updates that keep capacity honest.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from orders.models import Order, OrderStatus
from orders.store import InMemoryOrderStore
from riders.models import Rider
from riders.policy import DispatchPolicy, default_dispatch_policy
from riders.store import InMemoryRiderStore
from .analytics import AssignmentAnalytics, AssignmentReport, TimeRange
from .attempt_log import InMemoryAttemptLog
from .dispatcher import OfferDispatcher
from .fallback import ManualAssignmentFallback, ManualQueueItem
from .locks import InMemoryLockManager
from .models import AssignmentAttempt, CycleStatus
from .state_machines.order_state import holds_rider_slot

logger = logging.getLogger(__name__)


class DispatchService:

    def __init__(
        self,
        order_store,
        rider_store,
        notifier,
        attempt_log=None,
        policy: Optional[DispatchPolicy] = None,
        lock_manager=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.policy = policy or default_dispatch_policy()
        self.policy.validate()

        self.order_store = order_store
        self.rider_store = rider_store
        self.attempt_log = attempt_log or InMemoryAttemptLog()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.dispatcher = OfferDispatcher(
            order_store,
            rider_store,
            notifier,
            self.attempt_log,
            policy=self.policy,
            lock_manager=lock_manager or InMemoryLockManager(),
            clock=self.clock,
        )
        self.fallback = ManualAssignmentFallback(self.dispatcher, clock=self.clock)
        self.dispatcher.on_exhausted = self.fallback.on_exhausted
        self.analytics = AssignmentAnalytics(self.attempt_log)

    # --- Dispatch API ---

    def dispatch(self, order_id: str) -> CycleStatus:
        return self.dispatcher.dispatch(order_id)

    def dispatch_status(self, order_id: str) -> Optional[CycleStatus]:
        # Raises OrderNotFound for unknown orders.
        self.order_store.get_order(order_id)
        return self.dispatcher.cycle_status(order_id)

    def respond_to_offer(self, attempt_id: str, rider_id: str, response) -> AssignmentAttempt:
        return self.dispatcher.respond_to_offer(attempt_id, rider_id, response)

    def manual_assign(self, order_id: str, rider_id: str, operator_id: str) -> Order:
        return self.fallback.assign_manually(order_id, rider_id, operator_id)

    def manual_queue(self) -> List[ManualQueueItem]:
        return self.fallback.pending()

    def assignment_analytics(self, time_range: TimeRange) -> AssignmentReport:
        return self.analytics.get_assignment_analytics(time_range)

    def refresh_acceptance_rates(self, time_range: TimeRange) -> int:
        """
        Batch job: push per-rider acceptance rates from the audit trail into rider profiles.
        """
        rates = self.analytics.rider_acceptance_rates(time_range)
        updated = self.rider_store.update_acceptance_rates(rates)
        logger.info(f"Refreshed acceptance rate for {updated} riders")
        return updated

    # --- Order lifecycle events ---

    def cancel_order(self, order_id: str) -> Order:
        """
        External cancellation: stops any running cycle and frees the rider slot if one was taken.
        """
        with self.dispatcher.lock_manager.lock(self.dispatcher.lock_key(order_id)):
            order = self.order_store.get_order(order_id)
            held_slot = holds_rider_slot(order)

            cancelled = self.order_store.cancel(order_id)
            self.dispatcher.cancel(order_id, reason="order cancelled")
            if held_slot:
                self.rider_store.update_rider_active_order_count(order.rider_id, -1)

        self.fallback.discard(order_id)
        logger.info(f"Order {order_id} cancelled")
        return cancelled

    def mark_picked_up(self, order_id: str) -> Order:
        return self._progress(order_id, OrderStatus.PICKED_UP)

    def mark_on_the_way(self, order_id: str) -> Order:
        return self._progress(order_id, OrderStatus.ON_THE_WAY)

    def mark_delivered(self, order_id: str) -> Order:
        order = self._progress(order_id, OrderStatus.DELIVERED)
        self.rider_store.update_rider_active_order_count(order.rider_id, -1)
        return order

    def _progress(self, order_id: str, new_status: OrderStatus) -> Order:
        with self.dispatcher.lock_manager.lock(self.dispatcher.lock_key(order_id)):
            order = self.order_store.update_order_status(order_id, new_status)
        logger.info(f"Order {order_id} -> {new_status.value}")
        return order

    # --- Rider self-service ---

    def update_rider_location(self, rider_id: str, lat: float, lng: float) -> Rider:
        return self.rider_store.update_location(rider_id, lat, lng, at=self.clock())

    def set_rider_online(self, rider_id: str, is_online: bool) -> Rider:
        rider = self.rider_store.set_online(rider_id, is_online)
        logger.info(f"Rider {rider_id} is now {'online' if is_online else 'offline'}")
        if not is_online:
            # An offline rider cannot answer; don't make the order wait out the timer.
            self.dispatcher.rider_went_offline(rider_id)
        return rider


def build_in_memory_service(
    notifier,
    orders: Optional[List[Order]] = None,
    riders: Optional[List[Rider]] = None,
    policy: Optional[DispatchPolicy] = None,
    clock: Optional[Callable[[], datetime]] = None,
    attempt_log=None,
) -> DispatchService:
    return DispatchService(
        InMemoryOrderStore(orders),
        InMemoryRiderStore(riders),
        notifier,
        attempt_log=attempt_log,
        policy=policy,
        clock=clock,
    )
