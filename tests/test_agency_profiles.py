from __future__ import annotations

import pandas as pd

from transit_qualification.hub_tools.agency_profiles import (
    ILLINOIS_AGENCY_PROFILES,
    AgencyProfile,
    LatitudeBoundedRailRule,
    ParentStationRailRule,
    RouteTypeRailRule,
    agency_display_name,
    identify_rail_hubs,
)


def _stops() -> pd.DataFrame:
    return pd.DataFrame(
        [
            # CTA: station, platform, and a plain bus stop.
            {"stop_id": "cta_40380", "stop_name": "Clark/Lake", "stop_lat": "41.8857", "stop_lon": "-87.6309",
             "agency": "cta", "parent_station": "", "location_type": "1"},
            {"stop_id": "cta_30374", "stop_name": "Clark/Lake (Blue)", "stop_lat": "41.8857", "stop_lon": "-87.6309",
             "agency": "cta", "parent_station": "cta_40380", "location_type": "0"},
            {"stop_id": "cta_1106", "stop_name": "Clark & Lake", "stop_lat": "41.8858", "stop_lon": "-87.6312",
             "agency": "cta", "parent_station": "", "location_type": "0"},
            # Metra: Illinois station and a Wisconsin one.
            {"stop_id": "metra_OTC", "stop_name": "Ogilvie", "stop_lat": "41.8826", "stop_lon": "-87.6404",
             "agency": "metra", "parent_station": "", "location_type": ""},
            {"stop_id": "metra_KENOSHA", "stop_name": "Kenosha", "stop_lat": "42.5847", "stop_lon": "-87.8212",
             "agency": "metra", "parent_station": "", "location_type": ""},
            # Metro STL: a MetroLink stop and a bus stop.
            {"stop_id": "stl_1", "stop_name": "Civic Center", "stop_lat": "38.6250", "stop_lon": "-90.2050",
             "agency": "metro_stl", "parent_station": "", "location_type": ""},
            {"stop_id": "stl_2", "stop_name": "Market & 14th", "stop_lat": "38.6290", "stop_lon": "-90.2000",
             "agency": "metro_stl", "parent_station": "", "location_type": ""},
        ]
    )


def _routes() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "route_id": ["stl_red", "stl_bus"],
            "route_type": ["2", "3"],
            "agency": ["metro_stl", "metro_stl"],
        }
    )


def _stop_times() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "trip_id": ["t1", "t2"],
            "stop_id": ["stl_1", "stl_2"],
            "route_id": ["stl_red", "stl_bus"],
            "agency": ["metro_stl", "metro_stl"],
        }
    )


def test_parent_station_rule() -> None:
    """Platforms with a parent and location_type 1 stations are rail; bus stops are not."""
    stops = _stops()
    cta = stops[stops["agency"] == "cta"]
    rail = ParentStationRailRule().identify_rail_stations(cta, _routes(), _stop_times())
    assert sorted(rail["stop_id"]) == ["cta_30374", "cta_40380"]


def test_latitude_bounded_rule() -> None:
    stops = _stops()
    metra = stops[stops["agency"] == "metra"]
    rail = LatitudeBoundedRailRule(max_lat=42.5).identify_rail_stations(metra, _routes(), _stop_times())
    assert rail["stop_id"].tolist() == ["metra_OTC"]


def test_route_type_rule() -> None:
    stops = _stops()
    stl = stops[stops["agency"] == "metro_stl"]
    rail = RouteTypeRailRule((2,)).identify_rail_stations(stl, _routes(), _stop_times())
    assert rail["stop_id"].tolist() == ["stl_1"]


def test_identify_rail_hubs_dispatches_by_agency() -> None:
    """Each profile sees only its own agency's stops; output is typed rail."""
    rail = identify_rail_hubs(_stops(), _routes(), _stop_times(), ILLINOIS_AGENCY_PROFILES)

    assert sorted(rail["stop_id"]) == ["cta_30374", "cta_40380", "metra_OTC", "stl_1"]
    assert set(rail["type"]) == {"rail"}
    assert rail["stop_lat"].dtype.kind == "f"


def test_identify_rail_hubs_without_rail_profiles() -> None:
    profiles = (AgencyProfile("pace", "Pace", "Pace Suburban Bus"),)
    rail = identify_rail_hubs(_stops(), _routes(), _stop_times(), profiles)
    assert rail.empty
    assert "type" in rail.columns


def test_agency_display_name() -> None:
    assert agency_display_name(ILLINOIS_AGENCY_PROFILES, "cumtd") == "MTD"
    assert agency_display_name(ILLINOIS_AGENCY_PROFILES, "unknown") == "unknown"
