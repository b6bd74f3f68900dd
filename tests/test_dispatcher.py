import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from conftest import RecordingNotifier, rider_at, ready_order
from dispatch.exceptions import (
    AttemptNotFound,
    Conflict,
    InvalidOrderState,
    OrderNotFound,
    RiderCapacityExceeded,
)
from dispatch.analytics import TimeRange
from dispatch.models import AttemptOutcome, AssignmentType, CycleState
from dispatch.service import DispatchService, build_in_memory_service
from orders.models import OrderStatus
from orders.store import InMemoryOrderStore
from riders.store import InMemoryRiderStore
from riders.policy import DispatchPolicy


def _outcomes(service, order_id="O1"):
    return {a.rider_id: a.outcome for a in service.attempt_log.attempts(order_id)}


def test_timeout_then_accept_scenario(make_service, notifier):
    """
    R2 (1 km, idle) is offered first and stays silent; R1 (3 km, 2/3 busy) gets the
    next offer and accepts. R2's late answer is a Conflict.
    """
    policy = DispatchPolicy(offer_timeout_seconds=0.5)
    service = make_service(
        orders=[ready_order("O1")],
        riders=[
            rider_at("R1", 3, active_order_count=2, max_concurrent_orders=3),
            rider_at("R2", 1, active_order_count=0, max_concurrent_orders=3),
            rider_at("R3", 20, max_concurrent_orders=3),
        ],
        policy=policy,
    )

    status = service.dispatch("O1")
    assert status.state in (CycleState.IDLE, CycleState.OFFERING)

    # 1. R2 first, then R1 after the timeout. R3 never.
    offers = notifier.wait_for_offers(2)
    assert [o.rider_id for o in offers] == ["R2", "R1"]

    r2_offer, r1_offer = offers
    service.respond_to_offer(r1_offer.payload.attempt_id, "R1", "accept")

    final = service.dispatcher.wait_for_cycle("O1", timeout=5)
    assert final.state == CycleState.ACCEPTED
    assert final.assigned_rider_id == "R1"

    # 2. Binding applied to both sides
    order = service.order_store.get_order("O1")
    assert order.status == OrderStatus.RIDER_ASSIGNED
    assert order.rider_id == "R1"
    assert service.rider_store.get_rider("R1").active_order_count == 3

    # 3. The timeout was honoured, not cut short
    r2_attempt = service.attempt_log.get_attempt(r2_offer.payload.attempt_id)
    assert r2_attempt.outcome == AttemptOutcome.TIMED_OUT
    waited = (r2_attempt.responded_at - r2_attempt.offered_at).total_seconds()
    assert policy.offer_timeout_seconds <= waited < policy.offer_timeout_seconds + 1.0

    # 4. Late answer from R2
    with pytest.raises(Conflict):
        service.respond_to_offer(r2_offer.payload.attempt_id, "R2", "accept")
    assert service.order_store.get_order("O1").rider_id == "R1"
    assert "R3" not in notifier.offered_rider_ids()


def test_offer_payload(make_service, notifier):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("R1", 2)])

    service.dispatch("O1")
    [offer] = notifier.wait_for_offers(1)
    payload = offer.payload

    assert payload.order_id == "O1"
    assert payload.distance_to_pickup_km == pytest.approx(2.0, abs=0.01)
    assert payload.delivery_distance_km > 0
    assert payload.estimated_earnings > DispatchPolicy().base_earnings
    attempt = service.attempt_log.get_attempt(payload.attempt_id)
    assert payload.expires_at > attempt.offered_at
    assert payload.to_dict()["pickup"] == {"lat": 6.45, "lng": 3.4}

    service.cancel_order("O1")


def test_rejecting_rider_is_not_reoffered_and_queue_exhausts(make_service, notifier):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("A", 1), rider_at("B", 2)])

    service.dispatch("O1")

    [first] = notifier.wait_for_offers(1)
    service.respond_to_offer(first.payload.attempt_id, "A", "reject")

    offers = notifier.wait_for_offers(2)
    service.respond_to_offer(offers[1].payload.attempt_id, "B", "reject")

    final = service.dispatcher.wait_for_cycle("O1", timeout=5)

    assert final.state == CycleState.EXHAUSTED
    assert final.fallback_required
    assert notifier.offered_rider_ids("O1") == ["A", "B"]
    assert _outcomes(service) == {"A": AttemptOutcome.REJECTED, "B": AttemptOutcome.REJECTED}
    assert service.order_store.get_order("O1").status == OrderStatus.READY

    # Escalated to the operators with the scored candidates attached
    [item] = service.manual_queue()
    assert item.order_id == "O1"
    assert [c.rider_id for c in item.candidates] == ["A", "B"]


def test_all_timeouts_exhaust_with_single_pending_attempt_at_any_time(make_service, notifier, fast_policy):
    service = make_service(
        orders=[ready_order("O1")],
        riders=[rider_at("A", 1), rider_at("B", 2), rider_at("C", 3)],
        policy=fast_policy,
    )

    service.dispatch("O1")

    max_pending = 0
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        max_pending = max(max_pending, len(service.dispatcher.pending_attempts("O1")))
        status = service.dispatcher.cycle_status("O1")
        if not status.is_active:
            break
        time.sleep(0.01)

    assert status.state == CycleState.EXHAUSTED
    assert max_pending == 1
    assert set(_outcomes(service).values()) == {AttemptOutcome.TIMED_OUT}
    # Expired offers are withdrawn from the rider app
    assert {r for r, _, _ in notifier.revoked} == {"A", "B", "C"}


def test_duplicate_accept_is_honoured_once(make_service, notifier):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("R1", 1)])

    service.dispatch("O1")
    [offer] = notifier.wait_for_offers(1)
    attempt_id = offer.payload.attempt_id

    results = []

    def answer():
        try:
            service.respond_to_offer(attempt_id, "R1", "accept")
            results.append("ok")
        except Conflict:
            results.append("conflict")

    threads = [threading.Thread(target=answer) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == ["conflict", "ok"]
    assert service.rider_store.get_rider("R1").active_order_count == 1

    accepted = [a for a in service.attempt_log.attempts("O1") if a.outcome == AttemptOutcome.ACCEPTED]
    assert len(accepted) == 1

    [event] = service.attempt_log.assignment_events()
    assert event.assignment_type == AssignmentType.AUTOMATIC
    assert event.score is not None


def test_dispatch_is_idempotent_while_cycle_runs(make_service, notifier):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("R1", 1), rider_at("R2", 2)])

    first = service.dispatch("O1")
    second = service.dispatch("O1")

    assert first.cycle_id == second.cycle_id
    notifier.wait_for_offers(1)
    time.sleep(0.05)
    assert notifier.offered_rider_ids("O1") == ["R1"]

    service.cancel_order("O1")


def test_dispatch_after_accept_returns_finished_cycle(make_service, notifier):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("R1", 1)])

    first = service.dispatch("O1")
    [offer] = notifier.wait_for_offers(1)
    service.respond_to_offer(offer.payload.attempt_id, "R1", "accept")
    service.dispatcher.wait_for_cycle("O1", timeout=5)

    again = service.dispatch("O1")

    assert again.cycle_id == first.cycle_id
    assert again.state == CycleState.ACCEPTED


def test_empty_queue_exhausts_immediately_then_manual_assign(make_service, notifier):
    service = make_service(
        orders=[ready_order("O1")],
        riders=[
            rider_at("R1", 1, active_order_count=2, max_concurrent_orders=2),
            rider_at("R2", 2, active_order_count=1, max_concurrent_orders=1),
            rider_at("R5", 4, is_online=False),
        ],
    )

    status = service.dispatch("O1")

    assert status.state == CycleState.EXHAUSTED
    assert status.fallback_required
    assert notifier.offers == []
    assert [item.order_id for item in service.manual_queue()] == ["O1"]

    order = service.manual_assign("O1", "R5", "op-7")

    assert order.status == OrderStatus.RIDER_ASSIGNED
    assert order.rider_id == "R5"
    assert service.manual_queue() == []


def test_cancellation_supersedes_pending_offer_and_stops_cycle(make_service, notifier):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("A", 1), rider_at("B", 2)])

    service.dispatch("O1")
    [offer] = notifier.wait_for_offers(1)

    service.cancel_order("O1")

    final = service.dispatcher.wait_for_cycle("O1", timeout=5)
    assert final.state == CycleState.CANCELLED
    assert service.attempt_log.get_attempt(offer.payload.attempt_id).outcome == AttemptOutcome.SUPERSEDED
    assert ("A", "O1", "order cancelled") in notifier.revoked

    # No further offers once cancelled
    time.sleep(0.3)
    assert notifier.offered_rider_ids("O1") == ["A"]

    with pytest.raises(Conflict):
        service.respond_to_offer(offer.payload.attempt_id, "A", "accept")


def test_notification_failure_moves_on_without_waiting():
    notifier = RecordingNotifier(unreachable={"A"})
    # Long timeout: B must be offered well before it could expire
    service = build_in_memory_service(
        notifier,
        orders=[ready_order("O1")],
        riders=[rider_at("A", 1), rider_at("B", 2)],
        policy=DispatchPolicy(offer_timeout_seconds=10),
    )

    started = time.monotonic()
    service.dispatch("O1")
    offers = notifier.wait_for_offers(2, timeout=3)

    assert [o.rider_id for o in offers] == ["A", "B"]
    assert time.monotonic() - started < 3
    assert service.attempt_log.get_attempt(offers[0].payload.attempt_id).outcome == AttemptOutcome.TIMED_OUT

    service.respond_to_offer(offers[1].payload.attempt_id, "B", "accept")
    assert service.dispatcher.wait_for_cycle("O1", timeout=5).assigned_rider_id == "B"


def test_rider_filled_by_another_order_cannot_accept(make_service, notifier):
    """
    Both orders are offered to the same single-slot rider; only the first accept binds.
    """
    service = make_service(
        orders=[ready_order("O1"), ready_order("O2")],
        riders=[rider_at("X", 1, max_concurrent_orders=1), rider_at("Y", 3)],
    )

    service.dispatch("O1")
    service.dispatch("O2")
    offers = notifier.wait_for_offers(2)
    by_order = {o.order_id: o for o in offers}
    assert {o.rider_id for o in offers} == {"X"}

    service.respond_to_offer(by_order["O1"].payload.attempt_id, "X", "accept")
    with pytest.raises(RiderCapacityExceeded):
        service.respond_to_offer(by_order["O2"].payload.attempt_id, "X", "accept")

    assert service.rider_store.get_rider("X").active_order_count == 1
    # The rider said yes, so the attempt is not held against them as a rejection
    assert service.attempt_log.get_attempt(by_order["O2"].payload.attempt_id).outcome == AttemptOutcome.SUPERSEDED

    # O2 carries on with the next candidate
    offers = notifier.wait_for_offers(3)
    assert (offers[2].rider_id, offers[2].order_id) == ("Y", "O2")
    service.cancel_order("O2")


def test_unknown_or_foreign_attempt(make_service, notifier):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("A", 1)])

    service.dispatch("O1")
    [offer] = notifier.wait_for_offers(1)

    with pytest.raises(AttemptNotFound):
        service.respond_to_offer("no-such-attempt", "A", "accept")
    with pytest.raises(AttemptNotFound):
        service.respond_to_offer(offer.payload.attempt_id, "someone-else", "accept")
    with pytest.raises(ValueError):
        service.respond_to_offer(offer.payload.attempt_id, "A", "maybe")

    assert service.attempt_log.get_attempt(offer.payload.attempt_id).is_pending
    service.cancel_order("O1")


def test_dispatch_preconditions(make_service):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("A", 1)])
    service.order_store.cancel("O1")

    with pytest.raises(InvalidOrderState):
        service.dispatch("O1")
    with pytest.raises(OrderNotFound):
        service.dispatch("missing")


def test_audit_trail_is_append_only(make_service, notifier):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("A", 1)])

    service.dispatch("O1")
    [offer] = notifier.wait_for_offers(1)
    service.respond_to_offer(offer.payload.attempt_id, "A", "reject")
    service.dispatcher.wait_for_cycle("O1", timeout=5)

    # Pending entry first, resolved entry appended after it
    history = [a for a in service.attempt_log.attempt_history() if a.id == offer.payload.attempt_id]
    assert [a.outcome for a in history] == [None, AttemptOutcome.REJECTED]

    [cycle] = service.attempt_log.cycle_outcomes()
    assert cycle.state == CycleState.EXHAUSTED
    assert cycle.attempts == 1


def test_capacity_conflict_does_not_count_as_rejection(make_service, notifier):
    service = make_service(
        orders=[ready_order("O1"), ready_order("O2")],
        riders=[rider_at("X", 1, max_concurrent_orders=1)],
    )

    service.dispatch("O1")
    service.dispatch("O2")
    by_order = {o.order_id: o for o in notifier.wait_for_offers(2)}
    service.respond_to_offer(by_order["O1"].payload.attempt_id, "X", "accept")
    with pytest.raises(RiderCapacityExceeded):
        service.respond_to_offer(by_order["O2"].payload.attempt_id, "X", "accept")
    service.dispatcher.wait_for_cycle("O2", timeout=5)

    now = service.clock()
    window = TimeRange(start=now - timedelta(minutes=5), end=now + timedelta(minutes=5))
    report = service.assignment_analytics(window)

    assert report.rejection_rate == 0.0
    assert service.analytics.rider_acceptance_rates(window) == {"X": pytest.approx(1.0)}


def test_rider_going_offline_ends_their_pending_offer(make_service, notifier):
    service = make_service(
        orders=[ready_order("O1")],
        riders=[rider_at("A", 1), rider_at("B", 2)],
        policy=DispatchPolicy(offer_timeout_seconds=10),
    )

    started = time.monotonic()
    service.dispatch("O1")
    [first] = notifier.wait_for_offers(1)

    service.set_rider_online("A", False)

    # B is offered straight away instead of after A's 10 s timer
    offers = notifier.wait_for_offers(2, timeout=3)
    assert [o.rider_id for o in offers] == ["A", "B"]
    assert time.monotonic() - started < 3
    assert service.attempt_log.get_attempt(first.payload.attempt_id).outcome == AttemptOutcome.TIMED_OUT
    assert ("A", "O1", "rider went offline") in notifier.revoked

    with pytest.raises(Conflict):
        service.respond_to_offer(first.payload.attempt_id, "A", "accept")
    service.cancel_order("O1")


def test_stale_location_does_not_cancel_pending_offer(notifier, responsive_policy):
    now = [datetime.now(timezone.utc)]
    service = build_in_memory_service(
        notifier,
        orders=[ready_order("O1")],
        riders=[rider_at("A", 1)],
        policy=responsive_policy,
        clock=lambda: now[0],
    )

    service.dispatch("O1")
    [offer] = notifier.wait_for_offers(1)

    # A's last location fix is now well past the freshness window
    now[0] += timedelta(seconds=responsive_policy.location_freshness_seconds * 2)
    service.respond_to_offer(offer.payload.attempt_id, "A", "accept")

    final = service.dispatcher.wait_for_cycle("O1", timeout=5)
    assert final.state == CycleState.ACCEPTED
    assert final.assigned_rider_id == "A"


def test_order_cancelled_in_store_stops_the_cycle(make_service, notifier, fast_policy):
    service = make_service(
        orders=[ready_order("O1")],
        riders=[rider_at("A", 1), rider_at("B", 2), rider_at("C", 3)],
        policy=fast_policy,
    )

    service.dispatch("O1")
    notifier.wait_for_offers(1)
    # The order lifecycle cancels the order directly, without going through dispatch
    service.order_store.cancel("O1")

    final = service.dispatcher.wait_for_cycle("O1", timeout=5)

    assert final.state == CycleState.CANCELLED
    assert notifier.offered_rider_ids("O1") == ["A"]
    assert service.manual_queue() == []


def test_finished_cycles_are_released(make_service):
    orders = [ready_order(f"O{i}") for i in range(5)]
    # Nobody online: every cycle exhausts as soon as it starts
    service = make_service(orders=orders, riders=[rider_at("A", 1, is_online=False)])
    service.dispatcher.finished_cycle_limit = 2

    for order in orders:
        service.dispatch(order.id)

    assert service.dispatcher.tracked_order_ids() == ["O3", "O4"]
    assert service.dispatcher.lock_manager.keys() == []

    # Older cycles are still reported, from the audit trail
    status = service.dispatch_status("O0")
    assert status.state == CycleState.EXHAUSTED
    assert status.fallback_required
    assert service.dispatcher.wait_for_cycle("O0", timeout=1).state == CycleState.EXHAUSTED


def test_rejections_are_only_remembered_during_cooldown(make_service, notifier):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("A", 1), rider_at("B", 2)])

    service.dispatch("O1")
    [offer] = notifier.wait_for_offers(1)
    service.respond_to_offer(offer.payload.attempt_id, "A", "reject")
    notifier.wait_for_offers(2)

    # No cooldown configured, nothing to remember
    assert service.dispatcher._rejections_since(service.clock()) == {}
    service.cancel_order("O1")


def test_slow_pool_lookup_does_not_block_other_orders(notifier, responsive_policy):
    gate = threading.Event()

    class SlowFirstLookupStore(InMemoryRiderStore):
        def __init__(self, riders):
            super().__init__(riders)
            self.calls = 0

        def get_eligible_rider_pool(self, criteria=None):
            self.calls += 1
            if self.calls == 1:
                gate.wait(5)
            return super().get_eligible_rider_pool(criteria)

    service = DispatchService(
        InMemoryOrderStore([ready_order("O1"), ready_order("O2")]),
        SlowFirstLookupStore([rider_at("A", 1), rider_at("B", 2)]),
        notifier,
        policy=responsive_policy,
    )

    blocked = threading.Thread(target=service.dispatch, args=("O1",), daemon=True)
    blocked.start()
    while service.rider_store.calls == 0:
        time.sleep(0.01)

    # O1 is stuck in its pool lookup; O2 still starts and gets its offer
    status = service.dispatch("O2")
    assert status.order_id == "O2"
    [offer] = notifier.wait_for_offers(1, timeout=2)
    assert offer.order_id == "O2"

    gate.set()
    blocked.join(5)
    service.cancel_order("O1")
    service.cancel_order("O2")
