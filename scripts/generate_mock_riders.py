import csv
import random


def generate_mock_riders(filename="mock_riders.csv", count=60):
    # Riders scattered around the restaurant cluster used by generate_mock_orders.py
    base_lat = 6.4500
    base_lng = 3.4000

    with open(filename, mode='w', newline='') as file:
        writer = csv.writer(file)
        writer.writerow([
            "rider_id", "lat", "lng", "is_online", "active_orders", "max_concurrent_orders",
            "acceptance_rate", "completion_rate", "average_rating",
        ])

        for i in range(count):
            rider_id = f"RDR-{str(i+1).zfill(3)}"

            # Roughly +/- 12km, so some riders fall outside the dispatch radius
            lat = base_lat + (random.random() - 0.5) * 0.22
            lng = base_lng + (random.random() - 0.5) * 0.22

            # 85% online
            is_online = random.random() < 0.85

            max_orders = random.randint(1, 3)
            active = random.randint(0, max_orders)

            # A quarter of the fleet is new and has no history yet
            if random.random() < 0.25:
                acceptance, completion, rating = "", "", ""
            else:
                acceptance = round(random.uniform(0.4, 1.0), 2)
                completion = round(random.uniform(0.7, 1.0), 2)
                rating = round(random.uniform(3.5, 5.0), 1)

            writer.writerow([
                rider_id, round(lat, 6), round(lng, 6), int(is_online), active, max_orders,
                acceptance, completion, rating,
            ])

    print(f"Successfully generated {count} mock riders into '{filename}'.")


if __name__ == "__main__":
    generate_mock_riders()
