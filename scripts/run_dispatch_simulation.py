import csv
import logging
import os
import random
import threading
import time
from datetime import timedelta
from typing import List

from dispatch.analytics import TimeRange
from dispatch.exceptions import Conflict, DispatchError
from dispatch.service import build_in_memory_service
from orders.models import Order
from riders.models import Rider
from riders.policy import DispatchPolicy


class SimulatedRiderApp:
    """
    Stands in for the push gateway plus the rider's phone.
    Each offer is answered after a short random delay: accept, reject, or silence.
    """
    def __init__(self, accept_probability=0.5, reject_probability=0.3, max_delay=0.6):
        self.accept_probability = accept_probability
        self.reject_probability = reject_probability
        self.max_delay = max_delay
        self.service = None
        self.offers_sent = 0

    def notify_rider_of_offer(self, rider_id, order_id, payload):
        self.offers_sent += 1
        roll = random.random()
        if roll < self.accept_probability:
            answer = "accept"
        elif roll < self.accept_probability + self.reject_probability:
            answer = "reject"
        else:
            return True  # rider ignores the offer and it times out

        timer = threading.Timer(
            random.uniform(0.05, self.max_delay),
            self._answer,
            args=(payload.attempt_id, rider_id, answer),
        )
        timer.daemon = True
        timer.start()
        return True

    def revoke_offer(self, rider_id, order_id, reason):
        pass

    def _answer(self, attempt_id, rider_id, answer):
        try:
            self.service.respond_to_offer(attempt_id, rider_id, answer)
        except Conflict:
            pass  # late answer, order went elsewhere
        except DispatchError as exc:
            print(f"  [rider {rider_id}] answer failed: {exc}")


def _optional_float(value):
    return float(value) if value not in ("", None) else None


def load_orders(filepath="mock_orders.csv", limit=40) -> List[Order]:
    orders = []
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

    with open(os.path.join(base_dir, filepath), 'r') as file:
        reader = csv.DictReader(file)
        for row in reader:
            if len(orders) >= limit:
                break
            orders.append(
                Order.new(
                    row['order_id'],
                    float(row['restaurant_lat']),
                    float(row['restaurant_lng']),
                    delivery_lat=float(row['delivery_lat']),
                    delivery_lng=float(row['delivery_lng']),
                )
            )
    return orders


def load_riders(filepath="mock_riders.csv") -> List[Rider]:
    riders = []

    # Resolve the correct path depending on where the user runs the script from.
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

    with open(os.path.join(base_dir, filepath), 'r') as file:
        reader = csv.DictReader(file)
        for row in reader:
            riders.append(
                Rider.new(
                    row['rider_id'],
                    float(row['lat']),
                    float(row['lng']),
                    is_online=row['is_online'] == "1",
                    active_order_count=int(row['active_orders']),
                    max_concurrent_orders=int(row['max_concurrent_orders']),
                    acceptance_rate=_optional_float(row['acceptance_rate']),
                    completion_rate=_optional_float(row['completion_rate']),
                    average_rating=_optional_float(row['average_rating']),
                )
            )
    return riders


def run_simulation():
    logging.basicConfig(level=logging.WARNING, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print("=== STARTING END-TO-END DISPATCH SIMULATION ===")

    # 1. Load Data
    orders = load_orders("mock_orders.csv", limit=40)
    riders = load_riders("mock_riders.csv")
    print(f"Loaded {len(orders)} Orders and {len(riders)} Riders.\n")

    # 2. Configure System (timeouts shrunk so the run takes seconds, not minutes)
    policy = DispatchPolicy(offer_timeout_seconds=1.0, max_offer_queue_length=5)
    rider_app = SimulatedRiderApp()
    service = build_in_memory_service(rider_app, orders=orders, riders=riders, policy=policy)
    rider_app.service = service

    # 3. Start every cycle at once; they run concurrently
    print("Dispatching all ready orders...")
    start_time = time.time()
    for order in service.order_store.ready_orders():
        service.dispatch(order.id)

    for order in orders:
        service.dispatcher.wait_for_cycle(order.id, timeout=30)
    print(f"All cycles finished in {time.time() - start_time:.2f}s.\n")

    # 4. Operators pick up whatever ended in the manual queue
    manual_assigned = 0
    for item in service.manual_queue():
        for candidate in item.candidates:
            try:
                service.manual_assign(item.order_id, candidate.rider_id, operator_id="sim-operator")
                manual_assigned += 1
                break
            except DispatchError:
                continue

    # 5. Results
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    output_path = os.path.join(base_dir, "dispatch_results.csv")

    with open(output_path, "w", newline='') as file:
        writer = csv.writer(file)
        writer.writerow(["order_id", "final_status", "rider_id", "cycle_state", "offers_made"])

        print("--- Dispatch Summary ---")
        for order in orders:
            final = service.order_store.get_order(order.id)
            cycle = service.dispatch_status(order.id)
            writer.writerow([
                final.id,
                final.status.value,
                final.rider_id or "NONE",
                cycle.state.value if cycle else "N/A",
                len(cycle.offered_rider_ids) if cycle else 0,
            ])
            marker = "[SUCCESS]" if final.rider_id else "[FAILED]"
            print(f"{marker} Order {final.id} -> {final.rider_id or 'unassigned'} "
                  f"({cycle.state.value if cycle else 'no cycle'}, {len(cycle.offered_rider_ids) if cycle else 0} offers)")

    now = service.clock()
    window = TimeRange(start=now - timedelta(hours=1), end=now)
    report = service.assignment_analytics(window)
    refreshed = service.refresh_acceptance_rates(window)

    print("\n=== SIMULATION COMPLETE ===")
    print(f"Offers sent: {rider_app.offers_sent}")
    print(f"Manual assignments: {manual_assigned}")
    print(f"Acceptance rates refreshed for {refreshed} riders")
    busiest = sorted(service.rider_store.all_riders(), key=lambda r: r.active_order_count, reverse=True)[:5]
    print("Busiest riders: " + ", ".join(f"{r.id} ({r.active_order_count}/{r.max_concurrent_orders})" for r in busiest))
    for key, value in report.to_dict().items():
        print(f"  {key}: {value}")
    print(f"Results written to '{output_path}'.")


if __name__ == "__main__":
    run_simulation()
