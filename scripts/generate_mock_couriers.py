import pandas as pd
import numpy as np

def generate_mock_couriers(num_couriers=100, output_file="mock_couriers.csv", seed=None):
    """
    Generates a courier fleet snapshot for dispatch simulations.
    Couriers are scattered around the city centre with a realistic mix of
    offline couriers, low ratings (ineligible) and partially loaded couriers.
    """
    rng = np.random.default_rng(seed)

    # Center around Harare, Zimbabwe
    CENTER_LAT = -17.824858
    CENTER_LON = 31.053028

    data = []
    for courier_index in range(num_couriers):
        max_capacity = int(rng.integers(1, 4))

        data.append({
            "courier_id": f"CUR-{str(courier_index + 1).zfill(3)}",
            # Scatter couriers roughly +/- 12km around the centre
            "lat": np.round(CENTER_LAT + rng.uniform(-0.11, 0.11), 6),
            "lng": np.round(CENTER_LON + rng.uniform(-0.11, 0.11), 6),
            # 80% chance of being online
            "online": bool(rng.random() < 0.8),
            "rating": np.round(rng.uniform(3.5, 5.0), 1),
            "lifetime_deliveries": int(rng.integers(0, 400)),
            "current_count": int(rng.integers(0, max_capacity + 1)),
            "max_capacity": max_capacity,
        })

    df = pd.DataFrame(data)
    df.to_csv(output_file, index=False)
    print(f"✅ Generated {num_couriers} couriers and saved to '{output_file}'")

    online = df[df["online"]]
    print(f"  Online: {len(online)} | Rating >= 4.0: {(online['rating'] >= 4.0).sum()} "
          f"| With spare capacity: {(online['current_count'] < online['max_capacity']).sum()}")

if __name__ == "__main__":
    generate_mock_couriers(num_couriers=100)
