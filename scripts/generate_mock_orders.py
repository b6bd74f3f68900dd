import pandas as pd
import numpy as np
import uuid


def generate_mock_orders(num_orders=200, num_restaurants=20, output_file="mock_orders.csv"):
    """
    Generates ready orders clustered around a fixed set of restaurants, so that
    several orders compete for the same nearby riders.
    """
    CENTER_LAT = 6.4500
    CENTER_LNG = 3.4000

    # 1. Restaurants within ~5km of the centre (roughly 0.045 degrees)
    restaurants = []
    for restaurant_index in range(num_restaurants):
        restaurants.append({
            "id": f"r_{str(uuid.uuid4())[:8]}",
            "name": f"Restaurant {restaurant_index+1}",
            "lat": CENTER_LAT + np.random.uniform(-0.045, 0.045),
            "lng": CENTER_LNG + np.random.uniform(-0.045, 0.045),
        })

    data = []

    # 2. Orders
    for order_index in range(num_orders):
        restaurant = np.random.choice(restaurants)

        # Customer within ~3-6km of the restaurant
        delivery_lat = restaurant["lat"] + np.random.uniform(-0.05, 0.05)
        delivery_lng = restaurant["lng"] + np.random.uniform(-0.05, 0.05)

        data.append({
            "order_id": f"o_{str(order_index+1).zfill(6)}",
            "restaurant_id": restaurant["id"],
            "restaurant_name": restaurant["name"],
            "restaurant_lat": np.round(restaurant["lat"], 6),
            "restaurant_lng": np.round(restaurant["lng"], 6),
            "delivery_lat": np.round(delivery_lat, 6),
            "delivery_lng": np.round(delivery_lng, 6),
            "zone_id": np.random.choice(["island", "mainland"], p=[0.6, 0.4]),
        })

    # 3. Save to CSV
    df = pd.DataFrame(data)
    df.to_csv(output_file, index=False)
    print(f"✅ Generated {num_orders} orders and saved to '{output_file}'")

    print("\nBusiest restaurants:")
    counts = df['restaurant_name'].value_counts().head(5)
    for name, count in counts.items():
        print(f"  {name}: {count} orders")


if __name__ == "__main__":
    generate_mock_orders()
