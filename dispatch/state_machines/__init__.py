from .order_state import (
    transition_order_progress,
    transition_order_to_cancelled,
    transition_order_to_rider_assigned,
)
from .rider_state import handle_rider_acceptance, handle_rider_release
from .binding import bind_order_to_rider

__all__ = [
    "transition_order_to_rider_assigned",
    "transition_order_progress",
    "transition_order_to_cancelled",
    "handle_rider_acceptance",
    "handle_rider_release",
    "bind_order_to_rider",
]
