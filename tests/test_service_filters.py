from __future__ import annotations

import pandas as pd

from transit_qualification.frequency_tools.service_filters import (
    filter_peak_stop_times,
    get_weekday_bus_trips,
    identify_bus_routes,
    identify_weekday_services,
    prepare_peak_stop_times,
)
from transit_qualification.utils.qualification_config import AM_PEAK, QualificationConfig


def _calendar() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "service_id": ["WKD", "SAT", "MWF"],
            "monday": ["1", "0", "1"],
            "tuesday": ["1", "0", "0"],
            "wednesday": ["1", "0", "1"],
            "thursday": ["1", "0", "0"],
            "friday": ["1", "0", "1"],
            "saturday": ["0", "1", "0"],
            "sunday": ["0", "0", "0"],
        }
    )


def test_identify_weekday_services_requires_all_five_days() -> None:
    services = identify_weekday_services(_calendar())
    assert services["service_id"].tolist() == ["WKD"]
    assert services["agency"].tolist() == ["default"]


def test_identify_weekday_services_from_calendar_dates_only() -> None:
    """Date-only services count when their added dates cover Monday-Friday."""
    # 2024-03-04 is a Monday.
    dates = pd.DataFrame(
        {
            "service_id": ["D1"] * 5 + ["D2"] * 2 + ["WKD"] * 5,
            "date": ["20240304", "20240305", "20240306", "20240307", "20240308", "20240304", "20240309"]
            + ["20240304", "20240305", "20240306", "20240307", "20240308"],
            "exception_type": ["1"] * 12,
        }
    )
    services = identify_weekday_services(_calendar(), dates)
    assert sorted(services["service_id"]) == ["D1", "WKD"]


def test_identify_weekday_services_without_tables() -> None:
    services = identify_weekday_services(None, None)
    assert services.empty
    assert list(services.columns) == ["service_id", "agency"]


def test_identify_bus_routes() -> None:
    routes = pd.DataFrame({"route_id": ["B1", "L1", "B2"], "route_type": ["3", "1", "3"]})
    assert identify_bus_routes(routes)["route_id"].tolist() == ["B1", "B2"]


def test_get_weekday_bus_trips_tags_direction() -> None:
    trips = pd.DataFrame(
        {
            "trip_id": ["T1", "T2", "T3", "T4"],
            "route_id": ["B1", "B1", "L1", "B1"],
            "service_id": ["WKD", "WKD", "WKD", "SAT"],
            "direction_id": ["0", "", "1", "1"],
        }
    )
    bus_routes = pd.DataFrame({"route_id": ["B1"], "agency": ["default"]})
    weekday = identify_weekday_services(_calendar())
    out = get_weekday_bus_trips(trips, weekday, bus_routes)

    assert out["trip_id"].tolist() == ["T1", "T2"]
    assert out["direction_key"].tolist() == ["0", "combined"]


def test_filter_peak_window_is_inclusive_and_same_day() -> None:
    """07:00:00 and 09:00:00 are in; 09:00:01 and 31:30:00 are out."""
    stop_times = pd.DataFrame(
        {
            "trip_id": ["a", "b", "c", "d", "e", "f"],
            "arrival_time": ["07:00:00", "09:00:00", "09:00:01", "06:59:59", "31:30:00", ""],
            "departure_time": ["07:00:00", "09:00:00", "09:00:01", "06:59:59", "31:30:00", "08:00:00"],
        }
    )
    peak = filter_peak_stop_times(stop_times, AM_PEAK)
    assert peak["trip_id"].tolist() == ["a", "b", "f"]
    assert peak["time_sec"].tolist() == [7 * 3600, 9 * 3600, 8 * 3600]


def test_prepare_peak_stop_times_attaches_trip_fields() -> None:
    trips = pd.DataFrame(
        {
            "trip_id": ["T1", "T2"],
            "route_id": ["B1", "B1"],
            "agency": ["pace", "pace"],
            "direction_key": ["0", "1"],
            "shape_id": ["SH1", "SH2"],
        }
    )
    stop_times = pd.DataFrame(
        {
            "trip_id": ["T1", "T1", "T2", "T3"],
            "stop_id": ["S1", "S2", "S1", "S1"],
            "arrival_time": ["07:30:00", "16:30:00", "17:00:00", "07:45:00"],
        }
    )
    am, pm = prepare_peak_stop_times(stop_times, trips, QualificationConfig())

    assert am[["trip_id", "stop_id", "shape_id"]].values.tolist() == [["T1", "S1", "SH1"]]
    assert sorted(pm["trip_id"]) == ["T1", "T2"]
    assert set(pm["agency"]) == {"pace"}
