import pytest

from conftest import rider_at, ready_order
from dispatch.exceptions import Conflict, InvalidOrderState, OrderNotFound, RiderCapacityExceeded, RiderNotFound
from dispatch.models import AttemptOutcome, AssignmentType, CycleState
from orders.models import OrderStatus


def test_manual_assign_binds_and_records_operator(make_service):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("R5", 4)])

    order = service.manual_assign("O1", "R5", "op-42")

    assert order.status == OrderStatus.RIDER_ASSIGNED
    assert order.rider_id == "R5"
    assert service.rider_store.get_rider("R5").active_order_count == 1

    [event] = service.attempt_log.assignment_events()
    assert event.assignment_type == AssignmentType.MANUAL
    assert event.operator_id == "op-42"
    assert event.rider_id == "R5"


def test_manual_assign_on_assigned_order_is_a_conflict(make_service):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("R1", 1), rider_at("R2", 2)])
    service.manual_assign("O1", "R1", "op-1")

    with pytest.raises(Conflict):
        service.manual_assign("O1", "R2", "op-2")

    # No action taken
    assert service.order_store.get_order("O1").rider_id == "R1"
    assert service.rider_store.get_rider("R2").active_order_count == 0
    assert len(service.attempt_log.assignment_events()) == 1


def test_manual_assign_checks_rider_capacity(make_service):
    service = make_service(
        orders=[ready_order("O1")],
        riders=[rider_at("full", 1, active_order_count=2, max_concurrent_orders=2)],
    )

    with pytest.raises(RiderCapacityExceeded):
        service.manual_assign("O1", "full", "op-1")

    assert service.order_store.get_order("O1").status == OrderStatus.READY


def test_manual_assign_requires_ready_order(make_service):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("R1", 1)])
    service.cancel_order("O1")

    with pytest.raises(InvalidOrderState):
        service.manual_assign("O1", "R1", "op-1")


def test_manual_assign_unknown_order_or_rider(make_service):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("R1", 1)])

    with pytest.raises(OrderNotFound):
        service.manual_assign("nope", "R1", "op-1")
    with pytest.raises(RiderNotFound):
        service.manual_assign("O1", "nope", "op-1")


def test_manual_assign_stops_running_cycle(make_service, notifier):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("A", 1), rider_at("B", 2)])

    service.dispatch("O1")
    [offer] = notifier.wait_for_offers(1)

    service.manual_assign("O1", "B", "op-9")

    status = service.dispatcher.wait_for_cycle("O1", timeout=5)
    assert status.state == CycleState.CANCELLED
    assert service.attempt_log.get_attempt(offer.payload.attempt_id).outcome == AttemptOutcome.SUPERSEDED

    # The superseded rider can no longer take the order
    with pytest.raises(Conflict):
        service.respond_to_offer(offer.payload.attempt_id, "A", "accept")
    assert service.order_store.get_order("O1").rider_id == "B"
    assert service.rider_store.get_rider("A").active_order_count == 0


def test_exhausted_order_leaves_queue_after_manual_assignment(make_service):
    service = make_service(orders=[ready_order("O1")], riders=[rider_at("far", 25)])

    status = service.dispatch("O1")
    assert status.state == CycleState.EXHAUSTED

    [item] = service.manual_queue()
    assert item.order_id == "O1"
    assert item.candidates == ()

    service.manual_assign("O1", "far", "op-3")

    assert service.manual_queue() == []
