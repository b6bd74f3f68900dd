from dataclasses import replace
from datetime import datetime

from orders.models import ACTIVE_DELIVERY_STATUSES, Order, OrderStatus
from dispatch.exceptions import Conflict, InvalidOrderState

# Allowed forward moves once a rider is bound. Dispatch itself only owns READY -> RIDER_ASSIGNED.
_PROGRESS = {
    OrderStatus.PICKED_UP: (OrderStatus.RIDER_ASSIGNED,),
    OrderStatus.ON_THE_WAY: (OrderStatus.PICKED_UP,),
    OrderStatus.DELIVERED: (OrderStatus.RIDER_ASSIGNED, OrderStatus.PICKED_UP, OrderStatus.ON_THE_WAY),
}


def transition_order_to_rider_assigned(order: Order, rider_id: str, at: datetime) -> Order:
    """
    Binds a READY order to a rider.
    An order that already has a rider is a Conflict, not a bug: two paths raced for it.
    """
    if order.status == OrderStatus.RIDER_ASSIGNED or order.rider_id is not None:
        raise Conflict(f"Order {order.id} is already assigned to rider {order.rider_id}")

    if order.status != OrderStatus.READY:
        raise InvalidOrderState(f"Order {order.id} is not READY. Current: {order.status.value}")

    return replace(order, status=OrderStatus.RIDER_ASSIGNED, rider_id=rider_id, rider_assigned_at=at)


def transition_order_progress(order: Order, new_status: OrderStatus) -> Order:
    """
    Pickup / on-the-way / delivered moves reported by the rider app.
    """
    allowed_from = _PROGRESS.get(new_status)
    if allowed_from is None:
        raise InvalidOrderState(f"Cannot move order {order.id} to {new_status.value} outside dispatch")

    if order.status not in allowed_from:
        raise InvalidOrderState(
            f"Cannot transition order {order.id} to {new_status.value} from {order.status.value}"
        )
    return replace(order, status=new_status)


def transition_order_to_cancelled(order: Order) -> Order:
    """
    External cancellation. Delivered orders stay delivered.
    """
    if order.status == OrderStatus.DELIVERED:
        raise InvalidOrderState(f"Order {order.id} was already delivered")
    return replace(order, status=OrderStatus.CANCELLED)


def holds_rider_slot(order: Order) -> bool:
    return order.rider_id is not None and order.status in ACTIVE_DELIVERY_STATUSES
