"""
Purpose: Central configuration for rider scoring and offer dispatch.
What it does:

Stores all tunable weights/thresholds used when picking and offering riders:

DISTANCE_WEIGHT = 0.5
OFFER_TIMEOUT_SECONDS = 30
MAX_RADIUS_KM = 10
MAX_OFFER_QUEUE_LENGTH = 10

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields

from dotenv import load_dotenv


@dataclass(frozen=True)
class DispatchPolicy:
    """
    Central configuration for candidate scoring and the offer sequence.
    """

    # --- Scoring weights ---
    # score = w_distance * distance + w_load * load + w_performance * performance (+ w_rating * rating)
    distance_weight: float = 0.5
    load_weight: float = 0.2
    performance_weight: float = 0.3
    # Customer rating factor. Off by default.
    rating_weight: float = 0.0

    # --- Eligibility ---
    # Riders farther than this from the restaurant are never scored.
    max_radius_km: float = 10.0
    # A rider location older than this makes the rider ineligible.
    location_freshness_seconds: float = 300.0

    # --- Offer sequence ---
    # How long a single rider has to answer before the next candidate is tried.
    offer_timeout_seconds: float = 30.0
    # Only the top N candidates are ever offered in one cycle.
    max_offer_queue_length: int = 10
    # Riders who rejected any offer this recently are skipped. 0 disables.
    rejection_cooldown_seconds: float = 0.0

    # --- Cold start ---
    # Performance score for riders with no history. Never zero, so new riders still get work.
    cold_start_performance: float = 0.5
    default_rating: float = 4.5

    # --- Offer payload ---
    base_earnings: float = 500.0
    earnings_per_km: float = 100.0

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        weights = (self.distance_weight, self.load_weight, self.performance_weight, self.rating_weight)
        if any(w < 0 for w in weights):
            raise ValueError("scoring weights must be >= 0")

        if sum(weights) <= 0:
            raise ValueError("at least one scoring weight must be > 0")

        if self.max_radius_km <= 0:
            raise ValueError("max_radius_km must be > 0")

        if self.location_freshness_seconds <= 0:
            raise ValueError("location_freshness_seconds must be > 0")

        if self.offer_timeout_seconds <= 0:
            raise ValueError("offer_timeout_seconds must be > 0")

        if self.max_offer_queue_length < 1:
            raise ValueError("max_offer_queue_length must be >= 1")

        if self.rejection_cooldown_seconds < 0:
            raise ValueError("rejection_cooldown_seconds must be >= 0")

        if not 0.0 < self.cold_start_performance <= 1.0:
            raise ValueError("cold_start_performance must be in (0, 1]")

        if not 0.0 <= self.default_rating <= 5.0:
            raise ValueError("default_rating must be in [0, 5]")

        if self.base_earnings < 0 or self.earnings_per_km < 0:
            raise ValueError("earnings must be >= 0")


def default_dispatch_policy() -> DispatchPolicy:
    """
    Convenience factory for the default policy.
    """
    p = DispatchPolicy()
    p.validate()
    return p


def low_supply_policy() -> DispatchPolicy:
    """
    Example: few riders online (late night, bad weather).
    Look farther, give up on silent riders sooner and lean on proximity.
    """
    p = DispatchPolicy(
        distance_weight=0.6,
        load_weight=0.2,
        performance_weight=0.2,
        max_radius_km=15.0,
        offer_timeout_seconds=20.0,
        max_offer_queue_length=15,
    )
    p.validate()
    return p


def policy_from_env() -> DispatchPolicy:
    """
    Build a policy from DISPATCH_* environment variables (a .env file is honoured).

    Example in .env:
    DISPATCH_OFFER_TIMEOUT_SECONDS=45
    DISPATCH_MAX_RADIUS_KM=8
    """
    load_dotenv()

    overrides = {}
    for f in fields(DispatchPolicy):
        raw = os.getenv(f"DISPATCH_{f.name.upper()}")
        if raw is None or raw == "":
            continue
        cast = int if f.type in ("int", int) else float
        try:
            overrides[f.name] = cast(raw)
        except ValueError:
            raise ValueError(f"DISPATCH_{f.name.upper()} must be numeric, got {raw!r}")

    p = DispatchPolicy(**overrides)
    p.validate()
    return p
