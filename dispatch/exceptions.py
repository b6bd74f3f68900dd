"""
Purpose: Error taxonomy for the dispatch core.

Expected outcomes (an empty candidate pool, a rider timing out or rejecting)
are handled inside the offer state machine and never escape `dispatch()`.
The classes below are what callers may actually see.
"""


class DispatchError(Exception):
    """Base class for every error raised by the dispatch core."""
    pass


class InvalidOrderState(DispatchError):
    """Raised when an order is not in a status that allows the requested transition."""
    pass


class InvalidCoordinates(DispatchError):
    """Raised when a location is missing or outside the valid lat/lng range."""
    pass


class NoEligibleCandidates(DispatchError):
    """
    The rider pool produced no offerable candidate.
    Used as a signal for the manual fallback path, not surfaced from dispatch().
    """
    pass


class Conflict(DispatchError):
    """Raised when an offer is already resolved or an order is already assigned."""
    pass


class RiderCapacityExceeded(DispatchError):
    """Raised when a rider has no spare slot for another order."""
    pass


class OrderNotFound(DispatchError):
    pass


class RiderNotFound(DispatchError):
    pass


class AttemptNotFound(DispatchError):
    pass
