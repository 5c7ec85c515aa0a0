import logging
import os
import random
from datetime import datetime, timedelta, timezone
from typing import List

import numpy as np
import pandas as pd

from couriers.directory import InMemoryPartnerDirectory
from couriers.loader import load_couriers_csv
from dispatch.dispatcher import DispatchCoordinator
from dispatch.models import Decision
from dispatch.policy import load_dispatch_policy_from_env
from dispatch.sweeper import ExpirySweeper
from notifications.base import Notifier
from orders.models import Order
from orders.repository import OrderBook

from scripts.generate_mock_couriers import generate_mock_couriers

CENTER_LAT = -17.824858
CENTER_LON = 31.053028


class SimClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class SimulatedCourierApps(Notifier):
    """
    Stands in for the courier phones: collects offers so the simulation loop
    can answer them (or ignore them) a few seconds later.
    """
    def __init__(self):
        self.inbox = []
        self.unassigned = []

    def notify(self, courier_id, payload):
        if payload.get("type") == "order_offer":
            self.inbox.append((courier_id, payload["offer_id"]))

    def notify_order_assigned(self, order_id, courier_id):
        pass

    def notify_order_unassigned(self, order_id, reason):
        self.unassigned.append((order_id, reason))


def make_orders(num_orders: int, missing_pickup_rate: float = 0.05) -> List[Order]:
    orders = []
    for order_index in range(num_orders):
        pickup = (
            round(CENTER_LAT + np.random.uniform(-0.05, 0.05), 6),
            round(CENTER_LON + np.random.uniform(-0.05, 0.05), 6),
        )
        # A few restaurants never set their coordinates
        if random.random() < missing_pickup_rate:
            pickup = None

        orders.append(
            Order(
                id=f"o_{str(order_index + 1).zfill(6)}",
                pickup_coordinates=pickup,
                restaurant_id=f"r_{np.random.randint(1, 40)}",
                delivery_fee=round(float(np.random.uniform(1.5, 6.0)), 2),
                tip=float(np.random.choice([0.0, 0.5, 1.0])),
            )
        )
    return orders


def run_simulation(num_orders=30, couriers_csv="mock_couriers.csv", accept_p=0.5, reject_p=0.2, tick_seconds=5):
    print("=== STARTING OFFER CASCADE DISPATCH SIMULATION ===")
    logging.basicConfig(level=logging.WARNING)

    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    couriers_path = os.path.join(base_dir, couriers_csv)
    if not os.path.exists(couriers_path):
        generate_mock_couriers(num_couriers=100, output_file=couriers_path)

    # 1. Load Data
    couriers = load_couriers_csv(couriers_path)
    orders = make_orders(num_orders)
    print(f"Loaded {len(couriers)} Couriers and created {len(orders)} Orders.\n")

    # 2. Configure System
    clock = SimClock(datetime.now(timezone.utc))
    apps = SimulatedCourierApps()
    policy = load_dispatch_policy_from_env()
    coordinator = DispatchCoordinator(
        InMemoryPartnerDirectory(couriers),
        OrderBook(orders),
        notifier=apps,
        policy=policy,
        clock=clock,
    )
    sweeper = ExpirySweeper(coordinator)

    # 3. Trigger dispatch for every order
    for order in orders:
        coordinator.dispatch(order.id)

    # 4. Let couriers answer (or stay silent) until every dispatch settles
    deadline = clock.now + timedelta(seconds=policy.max_rounds * policy.offer_ttl_seconds * 2)
    while clock.now < deadline:
        live = [r for r in coordinator.requests.all() if not r.is_terminal]
        if not live:
            break

        clock.advance(tick_seconds)
        inbox, apps.inbox = apps.inbox, []
        for courier_id, offer_id in inbox:
            roll = random.random()
            if roll < accept_p:
                coordinator.respond_to_offer(offer_id, courier_id, Decision.ACCEPT)
            elif roll < accept_p + reject_p:
                coordinator.respond_to_offer(offer_id, courier_id, Decision.REJECT, reason="too far")
            else:
                apps.inbox.append((courier_id, offer_id))  # silent; the sweeper will expire it

        sweeper.run_once()

    # 5. Report
    rows = []
    for request in coordinator.requests.all():
        rows.append({
            "order_id": request.order_id,
            "state": request.state.value,
            "courier_id": request.assigned_courier_id or "",
            "offers": sum(1 for offer in coordinator.ledger.offers_for_order(request.order_id) if offer.request_id == request.id),
            "reason": request.exhausted_reason.value if request.exhausted_reason else "",
        })
    results = pd.DataFrame(rows, columns=["order_id", "state", "courier_id", "offers", "reason"])

    output_path = os.path.join(base_dir, "dispatch_results.csv")
    results.to_csv(output_path, index=False)

    dispatched_ids = set(results["order_id"])
    skipped = [order.id for order in orders if order.id not in dispatched_ids]

    print("\n=== SIMULATION COMPLETE ===")
    print(results["state"].value_counts().to_string())
    print(f"Orders never dispatched (configuration errors): {len(skipped)}")
    assigned = results[results["state"] == "assigned"]
    print(f"Mean offers for assigned orders: {assigned['offers'].mean():.2f}")
    print(f"Results written to '{output_path}'.")

if __name__ == "__main__":
    run_simulation()
