from __future__ import annotations

import math

import pandas as pd
import pytest
from conftest import build_feed, ft_to_lonlat

from transit_qualification.hub_tools.agency_profiles import AgencyProfile, LatitudeBoundedRailRule
from transit_qualification.hub_tools.hub_qualifier import (
    apply_hub_qualification,
    format_hub_diagnostics,
    identify_bus_hubs,
    identify_transit_hubs,
    route_display_names,
)
from transit_qualification.utils.qualification_config import QualificationConfig


def _run_bus(feed, config=None):
    config = config or QualificationConfig()
    return identify_bus_hubs(
        feed["stops"], feed["routes"], feed["trips"], feed["stop_times"], feed["calendar"], None, config
    )


def test_apply_hub_qualification_is_am_or_pm() -> None:
    metrics = pd.DataFrame(
        {
            "num_routes_am": [2, 1, 1, 3],
            "num_routes_pm": [0, 2, 1, 3],
            "interval_am": [15.0, math.inf, 10.0, 20.0],
            "interval_pm": [math.inf, 12.0, 10.0, 16.0],
        }
    )
    out = apply_hub_qualification(metrics, min_routes=2, max_interval=15)
    assert out["qualifies_routes"].tolist() == [True, True, False, True]
    assert out["qualifies_frequency"].tolist() == [True, True, True, False]
    assert out["qualifies_hub"].tolist() == [True, True, False, False]


def test_end_to_end_bus_hub(feed) -> None:
    """Three stops within 100 ft, two routes x four AM trips, shared State/Madison."""
    result = _run_bus(feed)
    hubs = result.hubs

    assert sorted(hubs["stop_id"]) == ["S1", "S2", "S3"]
    assert set(hubs["type"]) == {"bus_hub"}
    row = hubs.iloc[0]
    assert row["num_routes_am"] == 2
    assert row["trips_am"] == 8
    assert row["interval_am"] == 15.0
    assert math.isinf(row["interval_pm"])
    assert row["first_departure_am"] == "07:10 AM"
    assert row["last_departure_am"] == "07:58 AM"
    assert row["first_departure_pm"] is None or pd.isna(row["first_departure_pm"])
    assert row["routes"] == "29, State Express"
    assert row["directions"] == "Outbound"
    assert row["shared_streets"] == "Madison, State"
    assert hubs.crs.to_epsg() == 4326

    metrics = result.cluster_metrics.set_index("cluster_id")
    assert bool(metrics.loc[1, "qualifies_routes"])
    assert bool(metrics.loc[1, "qualifies_frequency"])
    assert bool(metrics.loc[1, "has_overlap"])


def test_weekend_trips_do_not_count(feed) -> None:
    result = _run_bus(feed)
    s1 = result.cluster_metrics[result.cluster_metrics["cluster_id"] == 1].iloc[0]
    assert s1["trips_am"] == 8


def test_nearby_parallel_street_is_rejected() -> None:
    """Same frequency, but the routes never name a common street."""
    feed = build_feed(second_street="Wabash & Monroe")
    feed["stops"].loc[feed["stops"]["stop_id"] == "S3", "stop_name"] = "Wabash & Monroe"
    result = _run_bus(feed)

    assert result.hubs.empty
    metrics = result.cluster_metrics.set_index("cluster_id")
    assert bool(metrics.loc[1, "qualifies_routes"]) and bool(metrics.loc[1, "qualifies_frequency"])
    assert not bool(metrics.loc[1, "has_overlap"])
    assert not bool(metrics.loc[1, "qualifies_hub"])


def test_single_route_cluster_fails_route_count(feed) -> None:
    """Eight trips from one route meet the interval but not the route minimum."""
    trips = feed["trips"].copy()
    trips.loc[trips["route_id"] == "R2", "route_id"] = "R1"
    feed = {**feed, "trips": trips}
    result = _run_bus(feed)

    assert result.hubs.empty
    row = result.cluster_metrics.set_index("cluster_id").loc[1]
    assert row["num_routes_am"] == 1
    assert not bool(row["qualifies_routes"])
    # Overlap is never checked for clusters failing the route/frequency test.
    assert 1 not in set(result.overlap["cluster_id"])


def test_stricter_threshold_disqualifies(feed) -> None:
    result = _run_bus(feed, QualificationConfig(frequency_threshold_min=10))
    assert result.hubs.empty


def test_transit_hubs_union_rail_and_bus(feed) -> None:
    """Rail stations from profiles are added to the bus hubs with type 'rail'."""
    lon, lat = ft_to_lonlat(0, 30_000)
    stops = pd.concat(
        [
            feed["stops"],
            pd.DataFrame([{"stop_id": "RAIL1", "stop_name": "North Station", "stop_lat": str(lat),
                           "stop_lon": str(lon)}]),
        ],
        ignore_index=True,
    )
    profiles = (AgencyProfile("default", "Test", "Test Rail", LatitudeBoundedRailRule(min_lat=41.95)),)
    config = QualificationConfig(agency_profiles=profiles)

    result = identify_transit_hubs(
        stops, feed["routes"], feed["trips"], feed["stop_times"], feed["calendar"], None, config
    )
    hubs = result.hubs
    assert sorted(hubs["stop_id"]) == ["RAIL1", "S1", "S2", "S3"]
    assert hubs.set_index("stop_id").loc["RAIL1", "type"] == "rail"
    assert hubs.geometry.iloc[0].geom_type == "Point"


def test_route_display_names_fallbacks() -> None:
    routes = pd.DataFrame(
        {
            "route_id": ["cta_9", "cta_X9", "pace_352"],
            "route_short_name": ["9", None, ""],
            "route_long_name": ["Ashland", "Ashland Express", None],
        }
    )
    assert route_display_names(routes) == {"cta_9": "9", "cta_X9": "Ashland Express", "pace_352": "352"}


def test_format_hub_diagnostics_without_direction() -> None:
    am = pd.DataFrame({"cluster_id": [1, 1], "route_id": ["R1", "R2"], "time_sec": [25200.0, 27000.0],
                       "direction_key": ["combined", "combined"]})
    pm = pd.DataFrame(columns=["cluster_id", "route_id", "time_sec", "direction_key"])
    routes = pd.DataFrame({"route_id": ["R1", "R2"], "route_short_name": ["1", "2"]})
    out = format_hub_diagnostics(pd.Series([1]), am, pm, routes).iloc[0]

    assert out["first_departure_am"] == "07:00 AM"
    assert out["last_departure_am"] == "07:30 AM"
    assert out["routes"] == "1, 2"
    assert out["directions"] == "N/A"


@pytest.mark.parametrize("radius", [20.0])
def test_small_radius_splits_cluster(feed, radius) -> None:
    """At 20 ft the buffers around stops 60 ft apart never meet, so no cluster
    has two routes."""
    result = _run_bus(feed, QualificationConfig(cluster_radius_ft=radius))
    assert result.hubs.empty
