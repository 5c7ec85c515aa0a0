import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List

import pytest

from couriers.directory import CourierNotFoundError, InMemoryPartnerDirectory, PartnerDirectory
from couriers.geo import EARTH_RADIUS_KM
from couriers.models import CourierPresence, LoadUpdate, RankedCandidate
from dispatch.dispatcher import DispatchCoordinator
from dispatch.errors import ErrorChannel
from dispatch.policy import DispatchPolicy
from notifications.base import Notifier
from orders.models import Order
from orders.repository import OrderBook

# Example: Center of a city
PICKUP = (40.7128, -74.0060)

KM_PER_DEGREE_LAT = EARTH_RADIUS_KM * 3.141592653589793 / 180.0


def point_north_of(origin, km):
    """(lat, lon) exactly `km` kilometres due north of origin along the meridian."""
    return (origin[0] + km / KM_PER_DEGREE_LAT, origin[1])


def courier_at(courier_id, km, *, pickup=PICKUP, rating=4.8, deliveries=150, current=0, capacity=3, online=True):
    lat, lon = point_north_of(pickup, km)
    return CourierPresence.new(
        courier_id,
        lat,
        lon,
        online=online,
        rating=rating,
        lifetime_deliveries=deliveries,
        current_count=current,
        max_capacity=capacity,
    )


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class RecordingNotifier(Notifier):
    def __init__(self, fail=False):
        self.fail = fail
        self.courier_messages = []
        self.assigned = []
        self.unassigned = []
        self._mutex = threading.Lock()

    def notify(self, courier_id, payload):
        if self.fail:
            raise RuntimeError("push gateway down")
        with self._mutex:
            self.courier_messages.append((courier_id, payload))

    def notify_order_assigned(self, order_id, courier_id):
        if self.fail:
            raise RuntimeError("push gateway down")
        with self._mutex:
            self.assigned.append((order_id, courier_id))

    def notify_order_unassigned(self, order_id, reason):
        if self.fail:
            raise RuntimeError("push gateway down")
        with self._mutex:
            self.unassigned.append((order_id, reason))

    def offers_to(self, courier_id):
        return [p for c, p in self.courier_messages if c == courier_id and p["type"] == "order_offer"]


class RecordingErrorChannel(ErrorChannel):
    def __init__(self):
        self.reports = []

    def report(self, error, *, order_id=None, context=None):
        self.reports.append((error, order_id, context))


class FakeDirectory(PartnerDirectory):
    """
    Directory with fixed, pre-scored candidates; capacity is still enforced.
    """

    def __init__(self, candidates: Iterable[RankedCandidate], capacity: int = 3):
        self.candidates: List[RankedCandidate] = sorted(
            candidates, key=lambda c: (-c.fitness, c.distance_km, c.courier_id)
        )
        self.capacity = capacity
        self.loads: Dict[str, int] = {c.courier_id: 0 for c in self.candidates}
        self.list_calls = []
        self._mutex = threading.Lock()

    def list_eligible(self, pickup, exclude=()):
        excluded = set(exclude)
        self.list_calls.append(excluded)
        with self._mutex:
            return [
                c for c in self.candidates
                if c.courier_id not in excluded and self.loads[c.courier_id] < self.capacity
            ]

    def increment_load(self, courier_id):
        with self._mutex:
            if courier_id not in self.loads:
                raise CourierNotFoundError(courier_id)
            if self.loads[courier_id] >= self.capacity:
                return LoadUpdate.CONFLICT
            self.loads[courier_id] += 1
            return LoadUpdate.SUCCESS

    def decrement_load(self, courier_id):
        with self._mutex:
            self.loads[courier_id] = max(0, self.loads[courier_id] - 1)

    def get(self, courier_id):
        raise NotImplementedError


def ranked(courier_id, fitness, distance_km=1.0):
    return RankedCandidate(courier_id=courier_id, fitness=fitness, distance_km=distance_km, breakdown={"distance": fitness})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def error_channel():
    return RecordingErrorChannel()


@pytest.fixture
def make_coordinator(clock, notifier, error_channel):
    def _make(directory, orders=None, **policy_overrides):
        if orders is None:
            orders = [Order(id="order-1", pickup_coordinates=PICKUP, delivery_fee=3.5, tip=1.0)]
        return DispatchCoordinator(
            directory,
            OrderBook(orders),
            notifier=notifier,
            error_channel=error_channel,
            policy=DispatchPolicy(**policy_overrides),
            clock=clock,
        )
    return _make


@pytest.fixture
def three_couriers_directory():
    return FakeDirectory([ranked("c90", 90), ranked("c70", 70), ranked("c50", 50)])


@pytest.fixture
def live_directory():
    return InMemoryPartnerDirectory([
        courier_at("near", 1.0),
        courier_at("mid", 4.0),
        courier_at("far", 8.0),
    ])
