import pandas as pd
import pytest

from couriers.loader import couriers_from_frame, load_couriers_csv


def test_load_couriers_csv(tmp_path):
    path = tmp_path / "couriers.csv"
    pd.DataFrame([
        {"courier_id": "CUR-001", "lat": -17.82, "lng": 31.05, "online": True, "rating": 4.7,
         "lifetime_deliveries": 120, "current_count": 1, "max_capacity": 3},
        {"courier_id": "CUR-002", "lat": None, "lng": None, "online": False, "rating": 4.1,
         "lifetime_deliveries": 3, "current_count": 0, "max_capacity": 2},
    ]).to_csv(path, index=False)

    first, second = load_couriers_csv(str(path))

    assert first.id == "CUR-001"
    assert first.online is True
    assert first.location == (-17.82, 31.05)
    assert first.current_count == 1
    assert second.location is None
    assert second.online is False
    assert second.max_capacity == 2


def test_status_column_and_missing_capacity():
    df = pd.DataFrame([
        {"courier_id": 7, "lat": 1.0, "lng": 2.0, "status": "online", "rating": 4.5},
        {"courier_id": 8, "lat": 1.0, "lng": 2.0, "status": "offline", "rating": 4.5},
    ])

    online, offline = couriers_from_frame(df)

    assert online.id == "7"
    assert online.online is True
    assert offline.online is False
    assert online.max_capacity == 3
    assert online.current_count == 0


def test_courier_id_column_is_required():
    with pytest.raises(ValueError):
        couriers_from_frame(pd.DataFrame([{"id": "x"}]))
