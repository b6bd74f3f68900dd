import threading
from collections import namedtuple

import pytest

from dispatch.service import build_in_memory_service
from notifications import NotificationDeliveryError
from orders.models import Order
from riders.models import Rider
from riders.policy import DispatchPolicy

# Restaurant used across the scenarios
RESTAURANT = (6.4500, 3.4000)

# Roughly 1 km of latitude in degrees
KM_LAT = 0.008993

SentOffer = namedtuple("SentOffer", ["rider_id", "order_id", "payload"])


def rider_at(rider_id, km_north, **kwargs):
    """
    Rider placed `km_north` kilometres due north of the restaurant.
    """
    return Rider.new(rider_id, RESTAURANT[0] + km_north * KM_LAT, RESTAURANT[1], **kwargs)


def ready_order(order_id="O1", **kwargs):
    return Order.new(order_id, RESTAURANT[0], RESTAURANT[1], 6.4650, 3.4200, **kwargs)


class RecordingNotifier:
    """
    Collects every offer so tests can answer on the rider's behalf.
    Riders listed in `unreachable` make delivery fail.
    """
    def __init__(self, unreachable=()):
        self.unreachable = set(unreachable)
        self.offers = []
        self.revoked = []
        self._cond = threading.Condition()

    def notify_rider_of_offer(self, rider_id, order_id, payload):
        with self._cond:
            self.offers.append(SentOffer(rider_id, order_id, payload))
            self._cond.notify_all()
        if rider_id in self.unreachable:
            raise NotificationDeliveryError(f"rider {rider_id} unreachable")
        return True

    def revoke_offer(self, rider_id, order_id, reason):
        with self._cond:
            self.revoked.append((rider_id, order_id, reason))

    def wait_for_offers(self, count, timeout=5.0):
        with self._cond:
            self._cond.wait_for(lambda: len(self.offers) >= count, timeout)
            return list(self.offers)

    def offered_rider_ids(self, order_id=None):
        with self._cond:
            return [o.rider_id for o in self.offers if order_id is None or o.order_id == order_id]


@pytest.fixture
def fast_policy():
    # Short timeout for tests that let offers expire
    return DispatchPolicy(offer_timeout_seconds=0.2)


@pytest.fixture
def responsive_policy():
    # Long enough that a test can always answer before the offer expires
    return DispatchPolicy(offer_timeout_seconds=2.0)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_service(notifier, responsive_policy):
    def _make(orders=(), riders=(), policy=None):
        return build_in_memory_service(
            notifier,
            orders=list(orders),
            riders=list(riders),
            policy=policy or responsive_policy,
        )
    return _make
