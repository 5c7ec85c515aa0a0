"""
Purpose: Load a courier fleet snapshot from CSV.
What it does:
Reads a CSV (as written by scripts/generate_mock_couriers.py) into
CourierPresence rows so a directory can be seeded for simulations and tests.

Expected columns:
courier_id, lat, lng, online, rating, lifetime_deliveries, current_count, max_capacity
(`online` may be replaced by a `status` column with "online"/"offline" values)
"""

from __future__ import annotations

from typing import List

import pandas as pd

from .models import DEFAULT_MAX_CAPACITY, CourierPresence

_TRUE_VALUES = {"true", "1", "yes", "online", "available"}


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    if pd.isna(value):
        return False
    return bool(value)


def _optional_float(value):
    if pd.isna(value):
        return None
    return float(value)


def couriers_from_frame(df: pd.DataFrame) -> List[CourierPresence]:
    if "courier_id" not in df.columns:
        raise ValueError("Courier CSV must contain a 'courier_id' column")

    online_column = "online" if "online" in df.columns else "status"
    couriers = []

    for row in df.to_dict(orient="records"):
        max_capacity = row.get("max_capacity", DEFAULT_MAX_CAPACITY)
        couriers.append(
            CourierPresence.new(
                str(row["courier_id"]),
                _optional_float(row.get("lat")),
                _optional_float(row.get("lng")),
                online=_as_bool(row.get(online_column, False)),
                rating=float(row.get("rating", 0.0)),
                lifetime_deliveries=int(row.get("lifetime_deliveries", 0)),
                current_count=int(row.get("current_count", 0)),
                max_capacity=int(DEFAULT_MAX_CAPACITY if pd.isna(max_capacity) else max_capacity),
            )
        )

    return couriers


def load_couriers_csv(filepath: str) -> List[CourierPresence]:
    return couriers_from_frame(pd.read_csv(filepath))
