"""Shared synthetic GTFS feed for the hub, corridor and runner tests.

Positions are offsets in feet from downtown Chicago. Everything is stored as
strings, the way ``load_gtfs_data`` returns it.
"""

from __future__ import annotations

from typing import Dict

import pandas as pd
import pytest

LAT0, LON0 = 41.88, -87.63
FT_PER_DEG_LAT = 364_000.0
FT_PER_DEG_LON = 271_000.0


def ft_to_lonlat(east_ft: float, north_ft: float) -> tuple[float, float]:
    return LON0 + east_ft / FT_PER_DEG_LON, LAT0 + north_ft / FT_PER_DEG_LAT


def _hhmm(minutes_after_midnight: int) -> str:
    return f"{minutes_after_midnight // 60:02d}:{minutes_after_midnight % 60:02d}:00"


def build_feed(second_street: str = "State & Madison") -> Dict[str, pd.DataFrame]:
    """Two routes meeting at a three-stop cluster, plus one far stop.

    Route R1 (4 AM trips) serves S1 then S4; route R2 (4 AM trips) serves S2
    then S3. S1, S2 and S3 lie within 100 ft of each other. R1 also runs
    along a shape east from S1; R2's shape shares R1's middle stretch.
    """
    stop_rows = [
        ("S1", "State & Madison", 0, 0),
        ("S2", second_street, 60, 0),
        ("S3", "Madison & State", 0, 60),
        ("S4", "Ashland & Lake", 3000, 0),
    ]
    stops = pd.DataFrame(
        [
            {"stop_id": sid, "stop_name": name, "stop_lat": str(ft_to_lonlat(e, n)[1]),
             "stop_lon": str(ft_to_lonlat(e, n)[0])}
            for sid, name, e, n in stop_rows
        ]
    )
    routes = pd.DataFrame(
        {
            "route_id": ["R1", "R2"],
            "route_short_name": ["29", ""],
            "route_long_name": ["State", "State Express"],
            "route_type": ["3", "3"],
        }
    )

    trip_rows = []
    stop_time_rows = []
    for n in range(4):
        trip_rows.append({"trip_id": f"T{n}", "route_id": "R1", "service_id": "WKD",
                          "direction_id": "0", "shape_id": "SH1"})
        trip_rows.append({"trip_id": f"U{n}", "route_id": "R2", "service_id": "WKD",
                          "direction_id": "0", "shape_id": "SH2"})
        base = 7 * 60 + 10 + 15 * n
        stop_time_rows.append({"trip_id": f"T{n}", "stop_id": "S1", "stop_sequence": "1",
                               "arrival_time": _hhmm(base), "departure_time": _hhmm(base)})
        stop_time_rows.append({"trip_id": f"T{n}", "stop_id": "S4", "stop_sequence": "2",
                               "arrival_time": _hhmm(base + 5), "departure_time": _hhmm(base + 5)})
        stop_time_rows.append({"trip_id": f"U{n}", "stop_id": "S2", "stop_sequence": "1",
                               "arrival_time": _hhmm(base + 2), "departure_time": _hhmm(base + 2)})
        stop_time_rows.append({"trip_id": f"U{n}", "stop_id": "S3", "stop_sequence": "2",
                               "arrival_time": _hhmm(base + 3), "departure_time": _hhmm(base + 3)})
    # A weekend trip that must be ignored.
    trip_rows.append({"trip_id": "W0", "route_id": "R1", "service_id": "SAT", "direction_id": "0", "shape_id": "SH1"})
    stop_time_rows.append({"trip_id": "W0", "stop_id": "S1", "stop_sequence": "1",
                           "arrival_time": "07:30:00", "departure_time": "07:30:00"})

    calendar = pd.DataFrame(
        {
            "service_id": ["WKD", "SAT"],
            "monday": ["1", "0"],
            "tuesday": ["1", "0"],
            "wednesday": ["1", "0"],
            "thursday": ["1", "0"],
            "friday": ["1", "0"],
            "saturday": ["0", "1"],
            "sunday": ["0", "0"],
            "start_date": ["20240101", "20240101"],
            "end_date": ["20241231", "20241231"],
        }
    )

    # SH1: 0 -> 1000 -> 2000 ft east. SH2: 1000 -> 2000 ft east, then 1000 ft north.
    shape_rows = []
    for shape_id, pts in (
        ("SH1", [(0, 0), (1000, 0), (2000, 0)]),
        ("SH2", [(1000, 0), (2000, 0), (2000, 1000)]),
    ):
        for seq, (e, n) in enumerate(pts, start=1):
            lon, lat = ft_to_lonlat(e, n)
            shape_rows.append({"shape_id": shape_id, "shape_pt_lat": str(lat), "shape_pt_lon": str(lon),
                               "shape_pt_sequence": str(seq)})

    return {
        "stops": stops,
        "routes": routes,
        "trips": pd.DataFrame(trip_rows),
        "stop_times": pd.DataFrame(stop_time_rows),
        "calendar": calendar,
        "shapes": pd.DataFrame(shape_rows),
    }


@pytest.fixture
def feed() -> Dict[str, pd.DataFrame]:
    return build_feed()


def write_feed(folder, tables: Dict[str, pd.DataFrame]) -> str:
    """Write *tables* as GTFS .txt files into *folder*."""
    folder.mkdir(parents=True, exist_ok=True)
    for name, df in tables.items():
        df.to_csv(folder / f"{name}.txt", index=False)
    return str(folder)
