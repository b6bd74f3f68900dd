"""
Purpose: The one write that turns an offer (or an operator override) into an assignment.
What it does:
Takes a slot on the rider, then moves the order READY -> RIDER_ASSIGNED.
If the order move fails the rider slot is handed back.

Callers must hold the order's dispatch lock: this is the single-writer section.
"""

from datetime import datetime

from orders.models import Order, OrderStatus
from dispatch.exceptions import Conflict, DispatchError, InvalidOrderState


def bind_order_to_rider(order_store, rider_store, order_id: str, rider_id: str, at: datetime) -> Order:
    order = order_store.get_order(order_id)

    if order.status == OrderStatus.RIDER_ASSIGNED or order.rider_id is not None:
        raise Conflict(f"Order {order_id} is already assigned to rider {order.rider_id}")
    if order.status != OrderStatus.READY:
        raise InvalidOrderState(f"Order {order_id} is not READY. Current: {order.status.value}")

    # Raises RiderCapacityExceeded atomically inside the rider store.
    rider_store.update_rider_active_order_count(rider_id, +1, at=at)

    try:
        return order_store.update_order_status(order_id, OrderStatus.RIDER_ASSIGNED, rider_id=rider_id, at=at)
    except DispatchError:
        rider_store.update_rider_active_order_count(rider_id, -1)
        raise
