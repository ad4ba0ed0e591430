"""Agency profiles and the rail-station rules they carry.

Rail stations qualify as hubs without any frequency test, but each agency
publishes its rail network differently. A profile pairs an agency id with
the one rule that picks out its rail stations:

  - ``ParentStationRailRule``: platforms that reference a parent station plus
    the parent stations themselves (location_type 1).
  - ``LatitudeBoundedRailRule``: every stop of a rail-only feed, optionally
    clipped to a latitude band (e.g. excluding out-of-state stations).
  - ``RouteTypeRailRule``: stops served by routes of given GTFS route types.

Profiles are plain frozen dataclasses and are passed in through
``QualificationConfig.agency_profiles``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Tuple

import pandas as pd

from transit_qualification.utils.gtfs_helpers import require_columns, with_agency

LOGGER = logging.getLogger(__name__)

RAIL_OUTPUT_COLUMNS = ["stop_id", "stop_name", "stop_lat", "stop_lon", "agency"]


class RailRule(Protocol):
    """Selects one agency's rail stations from its stops."""

    def identify_rail_stations(
        self, stops: pd.DataFrame, routes: pd.DataFrame, stop_times: pd.DataFrame
    ) -> pd.DataFrame: ...


def _is_blank(values: pd.Series) -> pd.Series:
    return values.isna() | (values.astype(str).str.strip() == "")


@dataclass(frozen=True)
class ParentStationRailRule:
    """Platforms with a parent station, plus location_type 1 stations."""

    def identify_rail_stations(
        self, stops: pd.DataFrame, routes: pd.DataFrame, stop_times: pd.DataFrame
    ) -> pd.DataFrame:
        parent = stops["parent_station"] if "parent_station" in stops.columns else pd.Series(
            pd.NA, index=stops.index
        )
        loc_type = pd.to_numeric(
            stops["location_type"] if "location_type" in stops.columns else pd.Series(pd.NA, index=stops.index),
            errors="coerce",
        )
        platforms = ~_is_blank(parent) & (loc_type.isna() | (loc_type == 0))
        stations = loc_type == 1
        return stops[platforms | stations]


@dataclass(frozen=True)
class LatitudeBoundedRailRule:
    """Every stop inside an optional latitude band."""

    max_lat: Optional[float] = None
    min_lat: Optional[float] = None

    def identify_rail_stations(
        self, stops: pd.DataFrame, routes: pd.DataFrame, stop_times: pd.DataFrame
    ) -> pd.DataFrame:
        lat = pd.to_numeric(stops["stop_lat"], errors="coerce")
        keep = lat.notna()
        if self.max_lat is not None:
            keep &= lat <= self.max_lat
        if self.min_lat is not None:
            keep &= lat >= self.min_lat
        return stops[keep]


@dataclass(frozen=True)
class RouteTypeRailRule:
    """Stops visited by any route whose route_type is in ``route_types``.

    ``stop_times`` must carry ``route_id`` (join trips first).
    """

    route_types: Tuple[int, ...] = (2,)

    def identify_rail_stations(
        self, stops: pd.DataFrame, routes: pd.DataFrame, stop_times: pd.DataFrame
    ) -> pd.DataFrame:
        require_columns(routes, ["route_id", "route_type"], "routes")
        require_columns(stop_times, ["stop_id", "route_id"], "stop_times")
        types = pd.to_numeric(routes["route_type"], errors="coerce")
        rail_routes = set(routes.loc[types.isin(list(self.route_types)), "route_id"])
        rail_stop_ids = set(stop_times.loc[stop_times["route_id"].isin(rail_routes), "stop_id"])
        return stops[stops["stop_id"].isin(rail_stop_ids)]


@dataclass(frozen=True)
class AgencyProfile:
    """Identity of one agency plus its rail rule (``None`` for bus-only agencies)."""

    agency_id: str
    name: str
    full_name: str
    rail_rule: Optional[RailRule] = None

    @property
    def has_rail(self) -> bool:
        return self.rail_rule is not None


ILLINOIS_AGENCY_PROFILES: Tuple[AgencyProfile, ...] = (
    AgencyProfile("cta", "CTA", "Chicago Transit Authority", ParentStationRailRule()),
    AgencyProfile("pace", "Pace", "Pace Suburban Bus"),
    # Metra's feed is rail only; stations north of 42.5 are in Wisconsin.
    AgencyProfile("metra", "Metra", "Metra Commuter Rail", LatitudeBoundedRailRule(max_lat=42.5)),
    AgencyProfile("metro_stl", "Metro STL", "Metro St. Louis (MetroLink)", RouteTypeRailRule((2,))),
    AgencyProfile("cumtd", "MTD", "Champaign-Urbana Mass Transit District"),
    AgencyProfile("rmtd", "RMTD", "Rockford Mass Transit District"),
    AgencyProfile(
        "metrolink_quad_cities",
        "MetroLINK",
        "Rock Island County Metropolitan Mass Transit District (MetroLINK)",
    ),
    AgencyProfile("citylink", "CityLink", "Greater Peoria Mass Transit District (CityLink)"),
    AgencyProfile("smtd", "SMTD", "Sangamon Mass Transit District"),
    AgencyProfile("dekalb", "DeKalb Transit", "DeKalb Public Transit"),
    AgencyProfile("connect_transit", "Connect Transit", "Bloomington-Normal Connect Transit"),
    AgencyProfile("dpts", "DPTS", "Decatur Public Transit System"),
    AgencyProfile("galesburg", "Galesburg", "Galesburg Transit"),
    AgencyProfile("gowest", "Go West", "Macomb McDonough County Public Transportation (Go West Transit)"),
)


def _agency_slice(df: pd.DataFrame, agency_id: str) -> pd.DataFrame:
    # Single-feed tables often carry no agency column at all.
    if "agency" not in df.columns:
        return df
    return df[df["agency"] == agency_id]


def agency_display_name(profiles: Iterable[AgencyProfile], agency_id: str) -> str:
    """Display name for *agency_id*, or the id itself when no profile matches."""
    for profile in profiles:
        if profile.agency_id == agency_id:
            return profile.name
    return agency_id


def identify_rail_hubs(
    stops: pd.DataFrame,
    routes: pd.DataFrame,
    stop_times: pd.DataFrame,
    profiles: Iterable[AgencyProfile],
) -> pd.DataFrame:
    """Apply each rail profile to its own agency's slice of the tables.

    Returns:
        Unique rail stations with ``type == "rail"``.
    """
    require_columns(stops, ["stop_id", "stop_lat", "stop_lon"], "stops")
    stops = with_agency(stops)

    found = []
    for profile in profiles:
        if profile.rail_rule is None:
            continue
        agency_stops = stops[stops["agency"] == profile.agency_id]
        if agency_stops.empty:
            continue
        stations = profile.rail_rule.identify_rail_stations(
            agency_stops,
            _agency_slice(routes, profile.agency_id),
            _agency_slice(stop_times, profile.agency_id),
        )
        LOGGER.debug("%s: %d rail stations.", profile.name, len(stations))
        found.append(stations)

    if not found:
        return pd.DataFrame(columns=[*RAIL_OUTPUT_COLUMNS, "type"])

    rail = pd.concat(found, ignore_index=True)
    cols = [c for c in RAIL_OUTPUT_COLUMNS if c in rail.columns]
    rail = rail[cols].drop_duplicates(subset=["stop_id"]).reset_index(drop=True)
    rail["stop_lat"] = pd.to_numeric(rail["stop_lat"], errors="coerce")
    rail["stop_lon"] = pd.to_numeric(rail["stop_lon"], errors="coerce")
    rail["type"] = "rail"
    LOGGER.info("Identified %d rail transit stations.", len(rail))
    return rail
