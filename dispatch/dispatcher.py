"""
Purpose: Offer state machine / decision pipeline (the "glue").
What it does:
Accepts a READY order, takes one snapshot of the rider pool, ranks it, and then
offers the order to one rider at a time:

    Idle -> Offering(rider) -> {Accepted | Rejected | TimedOut} -> Offering(next) | Exhausted

Each order's cycle runs on its own worker thread, so many orders are dispatched
concurrently while offers for a single order stay strictly sequential.
Rider answers arrive through respond_to_offer() and wake the waiting cycle; the
wait is a race between that wake-up and the offer timeout, never polling.

Only running cycles and a bounded set of recently finished ones are kept in
memory. Older finished cycles are answered from the attempt log.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple

from orders.models import Order, OrderStatus
from riders.policy import DispatchPolicy, default_dispatch_policy
from riders.selection import RiderPoolCriteria
from routing.geo import LatLng, haversine_km, is_valid_coordinate
from .candidate_filter import build_offer_queue, pool_by_id
from .exceptions import AttemptNotFound, Conflict, NoEligibleCandidates, RiderCapacityExceeded
from .locks import InMemoryLockManager
from .models import (
    ACTIVE_CYCLE_STATES,
    AssignmentAttempt,
    AssignmentEvent,
    AssignmentType,
    AttemptOutcome,
    CycleOutcome,
    CycleState,
    CycleStatus,
    OfferPayload,
    OfferResponse,
)
from .scoring import CandidateScore, score_candidates
from .state_machines.binding import bind_order_to_rider

logger = logging.getLogger(__name__)


@dataclass
class _PendingOffer:
    attempt: AssignmentAttempt
    # Set when the attempt resolves for any reason (answer, cancellation, supersede).
    answered: threading.Event = field(default_factory=threading.Event)


@dataclass
class DispatchCycle:
    """
    Mutable, cycle-local state. Only touched while holding the order's lock.
    """
    order_id: str
    pickup: LatLng
    destination: Optional[LatLng]
    offer_queue: List[str]
    candidates: Dict[str, CandidateScore]
    started_at: datetime
    cycle_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: CycleState = CycleState.IDLE
    current: Optional[_PendingOffer] = None
    offered_rider_ids: List[str] = field(default_factory=list)
    rejected_rider_ids: Set[str] = field(default_factory=set)
    assigned_rider_id: Optional[str] = None
    finished_at: Optional[datetime] = None
    end_reason: Optional[str] = None
    finished: threading.Event = field(default_factory=threading.Event)

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_CYCLE_STATES

    def ranked_candidates(self) -> List[CandidateScore]:
        return list(self.candidates.values())

    def status(self) -> CycleStatus:
        current = self.current
        pending = current.attempt if current is not None and current.attempt.is_pending else None
        return CycleStatus(
            order_id=self.order_id,
            cycle_id=self.cycle_id,
            state=self.state,
            started_at=self.started_at,
            current_rider_id=pending.rider_id if pending else None,
            current_attempt_id=pending.id if pending else None,
            assigned_rider_id=self.assigned_rider_id,
            offered_rider_ids=tuple(self.offered_rider_ids),
            remaining_candidates=len(self.offer_queue),
            finished_at=self.finished_at,
            end_reason=self.end_reason,
        )


ExhaustedCallback = Callable[[CycleStatus, List[CandidateScore]], None]


class OfferDispatcher:
    """
    Coordinates the hand-off of a ready Order to exactly one Rider.

    Collaborators are duck-typed:
    - order_store: get_order(), update_order_status()
    - rider_store: get_eligible_rider_pool(), update_rider_active_order_count()
    - notifier: notify_rider_of_offer(), optionally revoke_offer()
    - attempt_log: record_assignment_attempt(), record_cycle_outcome(), record_assignment_event(),
      get_attempt(), attempts(), cycle_outcomes()
    """

    def __init__(
        self,
        order_store,
        rider_store,
        notifier,
        attempt_log,
        policy: Optional[DispatchPolicy] = None,
        lock_manager=None,
        clock: Optional[Callable[[], datetime]] = None,
        on_exhausted: Optional[ExhaustedCallback] = None,
        finished_cycle_limit: int = 1000,
    ):
        self.order_store = order_store
        self.rider_store = rider_store
        self.notifier = notifier
        self.attempt_log = attempt_log
        self.policy = policy or default_dispatch_policy()
        self.lock_manager = lock_manager or InMemoryLockManager()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.on_exhausted = on_exhausted
        self.finished_cycle_limit = finished_cycle_limit

        # Guards the registries below. Never held while acquiring an order lock.
        self._registry_lock = threading.Lock()
        self._cycles: Dict[str, DispatchCycle] = {}
        self._finished: "OrderedDict[str, DispatchCycle]" = OrderedDict()
        self._offers: Dict[str, Tuple[_PendingOffer, DispatchCycle]] = {}
        self._recent_rejections: Dict[str, datetime] = {}

    @staticmethod
    def lock_key(order_id: str) -> str:
        return f"order_{order_id}"

    # --- Public API ---

    def dispatch(self, order_id: str) -> CycleStatus:
        """
        Starts a cycle for the order, or returns the running one.
        An empty offer queue finishes the cycle as EXHAUSTED right away.
        """
        exhausted: Optional[DispatchCycle] = None

        with self.lock_manager.lock(self.lock_key(order_id)):
            existing = self._tracked_cycle(order_id)
            if existing is not None and existing.is_active:
                logger.info(f"Dispatch already running for order {order_id} (cycle {existing.cycle_id})")
                return existing.status()

            order = self.order_store.get_order(order_id)
            if order.status != OrderStatus.READY:
                previous = existing.status() if existing is not None else self._status_from_log(order_id)
                if previous is not None:
                    return previous
                # No earlier cycle: scoring rejects the order with InvalidOrderState

            cycle = self._open_cycle(order)
            with self._registry_lock:
                self._finished.pop(order_id, None)
                self._cycles[order_id] = cycle

            try:
                self._start(cycle)
            except NoEligibleCandidates as exc:
                self._finish(cycle, CycleState.EXHAUSTED, str(exc))
                exhausted = cycle

            status = cycle.status()

        if exhausted is not None:
            self._escalate(exhausted)
        return status

    def respond_to_offer(self, attempt_id: str, rider_id: str, response) -> AssignmentAttempt:
        """
        Rider-facing answer intake. Only the first answer to a pending offer counts;
        anything after that is a Conflict and changes nothing.
        """
        response = OfferResponse(response)

        with self._registry_lock:
            entry = self._offers.get(attempt_id)

        if entry is None:
            attempt = self.attempt_log.get_attempt(attempt_id)
            if attempt is None or attempt.rider_id != rider_id:
                raise AttemptNotFound(f"No offer {attempt_id} for rider {rider_id}")
            outcome = attempt.outcome.value if attempt.outcome else "pending"
            raise Conflict(f"Offer {attempt_id} is no longer pending ({outcome})")

        offer, cycle = entry
        if offer.attempt.rider_id != rider_id:
            raise AttemptNotFound(f"No offer {attempt_id} for rider {rider_id}")

        with self.lock_manager.lock(self.lock_key(cycle.order_id)):
            if not offer.attempt.is_pending:
                raise Conflict(f"Offer {attempt_id} is no longer pending ({offer.attempt.outcome.value})")

            now = self.clock()

            if response == OfferResponse.REJECT:
                resolved = self._resolve(offer, AttemptOutcome.REJECTED, now)
                cycle.rejected_rider_ids.add(rider_id)
                self._note_rejection(rider_id, now)
                logger.info(f"Rider {rider_id} rejected order {cycle.order_id}")
                return resolved

            order = self.order_store.get_order(cycle.order_id)
            late = (
                not cycle.is_active
                or cycle.assigned_rider_id is not None
                or order.status != OrderStatus.READY
            )
            if not late:
                try:
                    bind_order_to_rider(self.order_store, self.rider_store, cycle.order_id, rider_id, now)
                except RiderCapacityExceeded:
                    # The rider said yes but filled up on other orders since the offer went out.
                    self._resolve(offer, AttemptOutcome.SUPERSEDED, now)
                    cycle.rejected_rider_ids.add(rider_id)
                    logger.info(f"Rider {rider_id} accepted order {cycle.order_id} with no free slot")
                    raise

                resolved = self._resolve(offer, AttemptOutcome.ACCEPTED, now)
                cycle.assigned_rider_id = rider_id
                self._supersede_pending(cycle, now)

                candidate = cycle.candidates.get(rider_id)
                self.attempt_log.record_assignment_event(
                    AssignmentEvent(
                        order_id=cycle.order_id,
                        rider_id=rider_id,
                        assignment_type=AssignmentType.AUTOMATIC,
                        assigned_at=now,
                        score=candidate.score if candidate else None,
                    )
                )
                self._finish(cycle, CycleState.ACCEPTED, f"accepted by rider {rider_id}")
                logger.info(f"Order {cycle.order_id} assigned to rider {rider_id}")
                return resolved

            resolved = self._resolve(offer, AttemptOutcome.SUPERSEDED, now)

        self._revoke(resolved, "order no longer available")
        raise Conflict(f"Order {cycle.order_id} is no longer available")

    def cancel(self, order_id: str, reason: str = "order cancelled") -> Optional[CycleStatus]:
        """
        Stops the order's running cycle: no further offers, the pending one is superseded.
        """
        cycle = self._tracked_cycle(order_id)
        if cycle is None:
            return self._status_from_log(order_id)

        superseded: List[AssignmentAttempt] = []
        with self.lock_manager.lock(self.lock_key(order_id)):
            if cycle.is_active:
                superseded = self._supersede_pending(cycle, self.clock())
                self._finish(cycle, CycleState.CANCELLED, reason)
            status = cycle.status()

        for attempt in superseded:
            self._revoke(attempt, reason)
        return status

    def rider_went_offline(self, rider_id: str) -> List[AssignmentAttempt]:
        """
        The rider's pending offers end now as timed out instead of running out the clock.
        Their cycles wake up and move on to the next candidate.
        """
        with self._registry_lock:
            entries = [(offer, cycle) for offer, cycle in self._offers.values() if offer.attempt.rider_id == rider_id]

        expired: List[AssignmentAttempt] = []
        for offer, cycle in entries:
            with self.lock_manager.lock(self.lock_key(cycle.order_id)):
                if offer.attempt.is_pending:
                    expired.append(self._resolve(offer, AttemptOutcome.TIMED_OUT, self.clock()))
                    logger.info(f"Offer to rider {rider_id} for order {cycle.order_id} ended: rider went offline")

        for attempt in expired:
            self._revoke(attempt, "rider went offline")
        return expired

    def cycle_status(self, order_id: str) -> Optional[CycleStatus]:
        cycle = self._tracked_cycle(order_id)
        if cycle is not None:
            return cycle.status()
        return self._status_from_log(order_id)

    def wait_for_cycle(self, order_id: str, timeout: Optional[float] = None) -> Optional[CycleStatus]:
        """
        Blocks until the order's current cycle ends (or the timeout passes).
        """
        cycle = self._tracked_cycle(order_id)
        if cycle is None:
            return self._status_from_log(order_id)
        cycle.finished.wait(timeout)
        return cycle.status()

    def tracked_order_ids(self) -> List[str]:
        """
        Orders whose cycle is still held in memory: running ones first, then recently finished.
        """
        with self._registry_lock:
            return list(self._cycles) + list(self._finished)

    def pending_attempts(self, order_id: str) -> List[AssignmentAttempt]:
        with self._registry_lock:
            return [
                offer.attempt
                for offer, cycle in self._offers.values()
                if cycle.order_id == order_id and offer.attempt.is_pending
            ]

    # --- Cycle internals ---

    def _open_cycle(self, order: Order) -> DispatchCycle:
        # Caller holds the order lock.
        now = self.clock()
        freshness = timedelta(seconds=self.policy.location_freshness_seconds)
        pool = self.rider_store.get_eligible_rider_pool(RiderPoolCriteria(fresh_since=now - freshness))

        scored = score_candidates(order, pool, self.policy, now=now)
        queue = build_offer_queue(
            order,
            scored,
            self.policy,
            riders=pool_by_id(pool),
            recent_rejections=self._rejections_since(now),
            now=now,
        )

        logger.info(
            f"Order {order.id}: {len(pool)} riders in pool, {len(scored)} eligible, {len(queue)} in offer queue"
        )
        destination = order.delivery_location if is_valid_coordinate(order.delivery_location) else None
        return DispatchCycle(
            order_id=order.id,
            pickup=order.restaurant_location,
            destination=destination,
            offer_queue=queue,
            candidates={c.rider_id: c for c in scored},
            started_at=now,
        )

    def _start(self, cycle: DispatchCycle) -> None:
        if not cycle.offer_queue:
            raise NoEligibleCandidates(f"No eligible candidates for order {cycle.order_id}")

        worker = threading.Thread(
            target=self._run_cycle,
            args=(cycle,),
            name=f"dispatch-{cycle.order_id}",
            daemon=True,
        )
        worker.start()

    def _run_cycle(self, cycle: DispatchCycle) -> None:
        logger.info(f"Dispatch cycle {cycle.cycle_id} started for order {cycle.order_id}")
        try:
            while True:
                offer = self._extend_next_offer(cycle)
                if offer is None:
                    break

                delivered = self._deliver(cycle, offer)
                if delivered:
                    # Rider answer (or cancellation) vs. the offer timer, whichever comes first.
                    offer.answered.wait(self.policy.offer_timeout_seconds)

                if self._settle_offer(cycle, offer, delivered):
                    break
        except Exception:
            logger.exception(f"Dispatch cycle {cycle.cycle_id} for order {cycle.order_id} crashed")
            with self.lock_manager.lock(self.lock_key(cycle.order_id)):
                if cycle.is_active:
                    self._supersede_pending(cycle, self.clock())
                    self._finish(cycle, CycleState.EXHAUSTED, "dispatch error")

        if cycle.state == CycleState.EXHAUSTED:
            self._escalate(cycle)

    def _extend_next_offer(self, cycle: DispatchCycle) -> Optional[_PendingOffer]:
        with self.lock_manager.lock(self.lock_key(cycle.order_id)):
            if not cycle.is_active:
                return None

            # The order may have been cancelled or assigned elsewhere behind the cycle's back.
            order = self.order_store.get_order(cycle.order_id)
            if order.status != OrderStatus.READY:
                self._supersede_pending(cycle, self.clock())
                self._finish(cycle, CycleState.CANCELLED, f"order is {order.status.value}")
                return None

            if not cycle.offer_queue:
                self._finish(cycle, CycleState.EXHAUSTED, "offer queue exhausted")
                return None

            rider_id = cycle.offer_queue.pop(0)
            attempt = AssignmentAttempt.new(cycle.order_id, rider_id, cycle.cycle_id, offered_at=self.clock())
            offer = _PendingOffer(attempt=attempt)

            cycle.current = offer
            cycle.state = CycleState.OFFERING
            cycle.offered_rider_ids.append(rider_id)

            with self._registry_lock:
                self._offers[attempt.id] = (offer, cycle)
            self.attempt_log.record_assignment_attempt(attempt)

        logger.info(f"Offering order {cycle.order_id} to rider {rider_id} (attempt {attempt.id})")
        return offer

    def _deliver(self, cycle: DispatchCycle, offer: _PendingOffer) -> bool:
        """
        Hands the offer to the notifier. Any failure counts as a timeout for this rider.
        """
        attempt = offer.attempt
        payload = self._build_payload(cycle, attempt)
        try:
            delivered = self.notifier.notify_rider_of_offer(attempt.rider_id, attempt.order_id, payload)
        except Exception as exc:
            logger.warning(f"Offer to rider {attempt.rider_id} for order {attempt.order_id} not delivered: {exc}")
            return False

        if not delivered:
            logger.warning(f"Offer to rider {attempt.rider_id} for order {attempt.order_id} not acknowledged")
            return False
        return True

    def _settle_offer(self, cycle: DispatchCycle, offer: _PendingOffer, delivered: bool) -> bool:
        """
        Called once the wait is over. Returns True when the cycle has ended.
        """
        timed_out = False
        with self.lock_manager.lock(self.lock_key(cycle.order_id)):
            if offer.attempt.is_pending:
                self._resolve(offer, AttemptOutcome.TIMED_OUT, self.clock())
                timed_out = True
                reason = "no response" if delivered else "notification failed"
                logger.info(
                    f"Offer to rider {offer.attempt.rider_id} for order {cycle.order_id} timed out ({reason})"
                )

            if cycle.current is offer:
                cycle.current = None
            ended = not cycle.is_active

        if timed_out and delivered:
            self._revoke(offer.attempt, "offer expired")
        return ended

    def _build_payload(self, cycle: DispatchCycle, attempt: AssignmentAttempt) -> OfferPayload:
        candidate = cycle.candidates.get(attempt.rider_id)
        delivery_km = haversine_km(cycle.pickup, cycle.destination) if cycle.destination else None
        earnings = self.policy.base_earnings + self.policy.earnings_per_km * (delivery_km or 0.0)

        return OfferPayload(
            attempt_id=attempt.id,
            order_id=attempt.order_id,
            pickup=cycle.pickup,
            destination=cycle.destination,
            distance_to_pickup_km=candidate.distance_km if candidate else 0.0,
            delivery_distance_km=delivery_km,
            estimated_earnings=earnings,
            expires_at=attempt.offered_at + timedelta(seconds=self.policy.offer_timeout_seconds),
        )

    # --- State helpers (caller holds the order lock) ---

    def _resolve(self, offer: _PendingOffer, outcome: AttemptOutcome, at: datetime) -> AssignmentAttempt:
        resolved = offer.attempt.resolve(outcome, at)
        offer.attempt = resolved
        self.attempt_log.record_assignment_attempt(resolved)
        with self._registry_lock:
            self._offers.pop(resolved.id, None)
        offer.answered.set()
        return resolved

    def _supersede_pending(self, cycle: DispatchCycle, at: datetime) -> List[AssignmentAttempt]:
        with self._registry_lock:
            pending = [offer for offer, c in self._offers.values() if c.order_id == cycle.order_id]

        superseded = []
        for offer in pending:
            if offer.attempt.is_pending:
                superseded.append(self._resolve(offer, AttemptOutcome.SUPERSEDED, at))
        return superseded

    def _finish(self, cycle: DispatchCycle, state: CycleState, reason: str) -> None:
        now = self.clock()
        cycle.state = state
        cycle.finished_at = now
        cycle.end_reason = reason
        cycle.current = None

        self.attempt_log.record_cycle_outcome(
            CycleOutcome(
                cycle_id=cycle.cycle_id,
                order_id=cycle.order_id,
                state=state,
                started_at=cycle.started_at,
                finished_at=now,
                attempts=len(cycle.offered_rider_ids),
                assigned_rider_id=cycle.assigned_rider_id,
                end_reason=reason,
            )
        )
        self._retire(cycle)

        if state == CycleState.EXHAUSTED:
            # Waiters are released by _escalate, once the fallback has the order.
            logger.warning(f"Dispatch cycle {cycle.cycle_id} for order {cycle.order_id} exhausted: {reason}")
        else:
            cycle.finished.set()
            logger.info(f"Dispatch cycle {cycle.cycle_id} for order {cycle.order_id} ended {state.value}: {reason}")

    def _escalate(self, cycle: DispatchCycle) -> None:
        try:
            if self.on_exhausted is not None:
                self.on_exhausted(cycle.status(), cycle.ranked_candidates())
        except Exception:
            logger.exception(f"Manual fallback hook failed for order {cycle.order_id}")
        finally:
            cycle.finished.set()

    def _retire(self, cycle: DispatchCycle) -> None:
        # Finished cycles stay in memory for a while so dispatch() stays idempotent
        # and waiters can read them; the oldest are dropped past the limit.
        with self._registry_lock:
            if self._cycles.get(cycle.order_id) is cycle:
                del self._cycles[cycle.order_id]
            self._finished[cycle.order_id] = cycle
            self._finished.move_to_end(cycle.order_id)
            while len(self._finished) > self.finished_cycle_limit:
                self._finished.popitem(last=False)

    # --- Registry lookups ---

    def _tracked_cycle(self, order_id: str) -> Optional[DispatchCycle]:
        with self._registry_lock:
            return self._cycles.get(order_id) or self._finished.get(order_id)

    def _status_from_log(self, order_id: str) -> Optional[CycleStatus]:
        outcomes = self.attempt_log.cycle_outcomes(order_id)
        if not outcomes:
            return None

        last = outcomes[-1]
        offered = tuple(a.rider_id for a in self.attempt_log.attempts(order_id) if a.cycle_id == last.cycle_id)
        return CycleStatus(
            order_id=order_id,
            cycle_id=last.cycle_id,
            state=last.state,
            started_at=last.started_at,
            assigned_rider_id=last.assigned_rider_id,
            offered_rider_ids=offered,
            finished_at=last.finished_at,
            end_reason=last.end_reason,
        )

    def _note_rejection(self, rider_id: str, at: datetime) -> None:
        if self.policy.rejection_cooldown_seconds <= 0:
            return
        with self._registry_lock:
            self._recent_rejections[rider_id] = at
            self._evict_rejections(at)

    def _rejections_since(self, now: datetime) -> Dict[str, datetime]:
        if self.policy.rejection_cooldown_seconds <= 0:
            return {}
        with self._registry_lock:
            self._evict_rejections(now)
            return dict(self._recent_rejections)

    def _evict_rejections(self, now: datetime) -> None:
        # Caller holds the registry lock.
        cutoff = now - timedelta(seconds=self.policy.rejection_cooldown_seconds)
        for rider_id in [r for r, at in self._recent_rejections.items() if at <= cutoff]:
            del self._recent_rejections[rider_id]

    def _revoke(self, attempt: AssignmentAttempt, reason: str) -> None:
        revoke = getattr(self.notifier, "revoke_offer", None)
        if revoke is None:
            return
        try:
            revoke(attempt.rider_id, attempt.order_id, reason)
        except Exception as exc:
            logger.warning(f"Revoking offer {attempt.id} from rider {attempt.rider_id} failed: {exc}")
