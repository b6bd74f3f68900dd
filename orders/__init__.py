"""
Orders domain package.

Public API:
- Domain models: Order, OrderStatus

The in-memory store lives in orders.store and is imported explicitly.
"""
from .models import ACTIVE_DELIVERY_STATUSES, Order, OrderStatus

__all__ = ["Order",
           "OrderStatus",
             "ACTIVE_DELIVERY_STATUSES",
               ]
