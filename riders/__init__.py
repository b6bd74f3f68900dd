"""
Riders domain package.

Public API:
- Domain model: Rider
- Configuration: DispatchPolicy and its factories
- Eligibility: RiderPoolCriteria, filter_eligible_riders

The in-memory store lives in riders.store and is imported explicitly.
"""
from .models import Rider
from .policy import DispatchPolicy, default_dispatch_policy, low_supply_policy, policy_from_env
from .selection import RiderPoolCriteria, filter_eligible_riders

__all__ = [
    "Rider",
    "DispatchPolicy",
    "default_dispatch_policy",
    "low_supply_policy",
    "policy_from_env",
    "RiderPoolCriteria",
    "filter_eligible_riders",
]
