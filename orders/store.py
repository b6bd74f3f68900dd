"""
Purpose: In-memory stand-in for the order lifecycle collaborator.
What it does:
- Owns the orders dispatch reads and the two status writes it is allowed to make

Provides operations:
   - add(order)
   - get_order(order_id)
   - update_order_status(order_id, new_status, rider_id=None)
   - cancel(order_id)
   - ready_orders()

Rule: Store owns persistence, state_machines own the transition rules.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from dispatch.exceptions import OrderNotFound
from dispatch.state_machines.order_state import (
    transition_order_progress,
    transition_order_to_cancelled,
    transition_order_to_rider_assigned,
)
from .models import Order, OrderStatus


class InMemoryOrderStore:
    """
    Thread-safe dictionary of orders keyed by id.
    Every write replaces the stored Order with the one returned by the transition.
    """

    def __init__(self, orders: Optional[List[Order]] = None):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}
        for order in orders or []:
            self.add(order)

    # --- Public API ---

    def add(self, order: Order) -> None:
        """
        Register an order. Adding the same id twice is a no-op.
        """
        with self._lock:
            if order.id in self._orders:
                #idempotency : dont double insert
                return
            self._orders[order.id] = order

    def get_order(self, order_id: str) -> Order:
        with self._lock:
            order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    def ready_orders(self) -> List[Order]:
        with self._lock:
            return [o for o in self._orders.values() if o.status == OrderStatus.READY]

    def update_order_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        *,
        rider_id: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Order:
        at = at or datetime.now(timezone.utc)
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFound(f"Order {order_id} not found")

            if new_status == OrderStatus.RIDER_ASSIGNED:
                updated = transition_order_to_rider_assigned(order, rider_id, at)
            elif new_status == OrderStatus.CANCELLED:
                updated = transition_order_to_cancelled(order)
            else:
                updated = transition_order_progress(order, new_status)

            self._orders[order_id] = updated
            return updated

    def cancel(self, order_id: str) -> Order:
        return self.update_order_status(order_id, OrderStatus.CANCELLED)
