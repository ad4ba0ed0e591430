"""Hub qualification: rail stations plus frequent, intersecting bus clusters.

Two pathways feed one output layer:

  - Rail: each agency profile's rail rule; rail stations qualify outright.
  - Bus: weekday bus stops are clustered, peak trip/route counts are computed
    per (cluster, agency, direction bucket), and a cluster qualifies when
    (a) it has enough routes in AM or PM, (b) its AM or PM interval meets the
    threshold, and (c) its routes share a street. (c) is only checked for
    clusters that already pass (a) and (b).

Every stop of a qualifying bus cluster is emitted as a ``bus_hub`` point with
the cluster's metrics and departure/route/direction diagnostics.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional

import geopandas as gpd
import pandas as pd

from transit_qualification.frequency_tools.frequency_calculator import (
    calculate_peak_frequency,
    combine_am_pm_metrics,
    determine_grouping_cols,
)
from transit_qualification.frequency_tools.service_filters import (
    get_weekday_bus_trips,
    identify_bus_routes,
    identify_weekday_services,
    prepare_peak_stop_times,
)
from transit_qualification.hub_tools.agency_profiles import identify_rail_hubs
from transit_qualification.hub_tools.route_overlap_verifier import verify_route_overlap
from transit_qualification.hub_tools.stop_clusterer import cluster_stops
from transit_qualification.utils.geometry_engine import GeometryEngine, ShapelyGeometryEngine
from transit_qualification.utils.gtfs_helpers import (
    format_seconds_12h,
    require_columns,
    with_agency,
)
from transit_qualification.utils.qualification_config import QualificationConfig

LOGGER = logging.getLogger(__name__)

DIRECTION_LABELS = {"0": "Outbound", "1": "Inbound"}
METRIC_COLUMNS = [
    "num_routes_am",
    "num_routes_pm",
    "num_routes_total",
    "trips_am",
    "trips_pm",
    "trips_total",
    "interval_am",
    "interval_pm",
    "interval_combined",
]
DIAGNOSTIC_COLUMNS = [
    "first_departure_am",
    "last_departure_am",
    "first_departure_pm",
    "last_departure_pm",
    "routes",
    "directions",
]
STOP_COLUMNS = ["stop_id", "stop_name", "stop_lat", "stop_lon", "agency"]


@dataclass(frozen=True)
class HubResult:
    """Everything produced by one hub run, for output and diagnostics."""

    hubs: gpd.GeoDataFrame
    cluster_metrics: pd.DataFrame
    overlap: pd.DataFrame
    clustered_stops: pd.DataFrame


def apply_hub_qualification(metrics: pd.DataFrame, min_routes: int = 2, max_interval: float = 15.0) -> pd.DataFrame:
    """Add ``qualifies_routes``, ``qualifies_frequency`` and ``qualifies_hub``.

    Both tests are AM OR PM. ``qualifies_hub`` here is the route-and-frequency
    part of the rule only; overlap verification is applied afterwards.
    """
    require_columns(metrics, ["num_routes_am", "num_routes_pm", "interval_am", "interval_pm"], "hub metrics")
    out = metrics.copy()
    out["qualifies_routes"] = (out["num_routes_am"] >= min_routes) | (out["num_routes_pm"] >= min_routes)
    out["qualifies_frequency"] = (out["interval_am"] <= max_interval) | (out["interval_pm"] <= max_interval)
    out["qualifies_hub"] = out["qualifies_routes"] & out["qualifies_frequency"]
    return out


def calculate_bus_hub_metrics(
    am_stop_times: pd.DataFrame,
    pm_stop_times: pd.DataFrame,
    config: QualificationConfig,
) -> pd.DataFrame:
    """Combined AM/PM metrics per cluster, agency and direction bucket.

    Both inputs must already carry ``cluster_id``.
    """
    keys = determine_grouping_cols(["cluster_id", "agency"], am_stop_times)
    am = calculate_peak_frequency(am_stop_times, keys, config.am_peak)
    pm = calculate_peak_frequency(pm_stop_times, keys, config.pm_peak)
    combined = combine_am_pm_metrics(am, pm, keys, config.am_peak, config.pm_peak)
    return apply_hub_qualification(combined, config.hub_min_routes, config.frequency_threshold_min)


def route_display_names(routes: pd.DataFrame) -> Dict[str, str]:
    """route_id -> short name, else long name, else the id without its agency prefix."""
    names: Dict[str, str] = {}
    for row in routes.itertuples(index=False):
        short = getattr(row, "route_short_name", None)
        long_name = getattr(row, "route_long_name", None)
        if isinstance(short, str) and short.strip():
            names[row.route_id] = short.strip()
        elif isinstance(long_name, str) and long_name.strip():
            names[row.route_id] = long_name.strip()
        else:
            names[row.route_id] = re.sub(r"^[^_]+_", "", str(row.route_id))
    return names


def format_hub_diagnostics(
    cluster_ids: pd.Series,
    am_stop_times: pd.DataFrame,
    pm_stop_times: pd.DataFrame,
    routes: pd.DataFrame,
) -> pd.DataFrame:
    """Departure window, route list and direction labels per cluster.

    Returns:
        One row per cluster id with the :data:`DIAGNOSTIC_COLUMNS`.
    """
    wanted = set(cluster_ids)
    am = am_stop_times[am_stop_times["cluster_id"].isin(wanted)]
    pm = pm_stop_times[pm_stop_times["cluster_id"].isin(wanted)]
    names = route_display_names(routes)

    out = pd.DataFrame({"cluster_id": sorted(wanted)})
    for period, frame in (("am", am), ("pm", pm)):
        times = frame.groupby("cluster_id")["time_sec"].agg(["min", "max"])
        out[f"first_departure_{period}"] = out["cluster_id"].map(times["min"]).map(format_seconds_12h)
        out[f"last_departure_{period}"] = out["cluster_id"].map(times["max"]).map(format_seconds_12h)

    both = pd.concat([am, pm], ignore_index=True)
    routes_list: Dict[int, str] = {}
    directions_list: Dict[int, str] = {}
    for cluster_id, grp in both.groupby("cluster_id"):
        labels = sorted({names.get(r, str(r)) for r in grp["route_id"].unique()})
        routes_list[cluster_id] = ", ".join(labels)
        keys = grp["direction_key"] if "direction_key" in grp.columns else []
        dirs = sorted({DIRECTION_LABELS[d] for d in keys if d in DIRECTION_LABELS})
        directions_list[cluster_id] = ", ".join(dirs) if dirs else "N/A"
    out["routes"] = out["cluster_id"].map(routes_list)
    out["directions"] = out["cluster_id"].map(directions_list).fillna("N/A")
    return out


def _best_metrics_per_cluster(qualifying: pd.DataFrame) -> pd.DataFrame:
    # One metric row per cluster: the most frequent qualifying agency/direction.
    ranked = qualifying.assign(
        _best_interval=qualifying[["interval_am", "interval_pm"]].min(axis=1)
    ).sort_values(["cluster_id", "_best_interval", "agency", "direction_key"])
    return ranked.drop_duplicates("cluster_id").drop(columns="_best_interval")


def to_points_gdf(df: pd.DataFrame, config: QualificationConfig) -> gpd.GeoDataFrame:
    """Hub rows as WGS84 points reprojected to the configured output CRS."""
    gdf = gpd.GeoDataFrame(
        df.copy(),
        geometry=gpd.points_from_xy(df["stop_lon"].astype(float), df["stop_lat"].astype(float)),
        crs=config.gtfs_crs,
    )
    return gdf.to_crs(config.output_crs)


def identify_bus_hubs(
    stops: pd.DataFrame,
    routes: pd.DataFrame,
    trips: pd.DataFrame,
    stop_times: pd.DataFrame,
    calendar: Optional[pd.DataFrame],
    calendar_dates: Optional[pd.DataFrame],
    config: QualificationConfig,
    engine: Optional[GeometryEngine] = None,
) -> HubResult:
    """Run the bus pathway end to end.

    Args:
        stops, routes, trips, stop_times, calendar, calendar_dates: Feed tables.
        config: Radius, peak windows, thresholds and CRS settings.
        engine: Geometry backend for clustering.

    Returns:
        :class:`HubResult` whose ``hubs`` holds the qualifying bus hub stops.
    """
    engine = engine or ShapelyGeometryEngine()
    require_columns(stops, ["stop_id", "stop_name", "stop_lat", "stop_lon"], "stops")

    weekday = identify_weekday_services(calendar, calendar_dates)
    bus_trips = get_weekday_bus_trips(trips, weekday, identify_bus_routes(routes))
    am, pm = prepare_peak_stop_times(stop_times, bus_trips, config)

    peak_stop_ids = set(am["stop_id"]) | set(pm["stop_id"])
    bus_stops = with_agency(stops)
    bus_stops = bus_stops[bus_stops["stop_id"].isin(peak_stop_ids)]
    clustered = cluster_stops(bus_stops, config.cluster_radius_ft, config.projected_crs, engine)

    stop_clusters = clustered[["stop_id", "cluster_id"]]
    am = am.merge(stop_clusters, on="stop_id", how="inner")
    pm = pm.merge(stop_clusters, on="stop_id", how="inner")

    metrics = calculate_bus_hub_metrics(am, pm, config)
    candidates = metrics[metrics["qualifies_hub"]]
    LOGGER.info("%d of %d cluster groups pass the route and frequency tests.", len(candidates), len(metrics))

    stop_routes = pd.concat([am, pm], ignore_index=True)[["stop_id", "route_id"]].drop_duplicates()
    overlap = verify_route_overlap(clustered, stop_routes, candidates["cluster_id"].unique())
    metrics = metrics.merge(overlap[["cluster_id", "has_overlap", "shared_streets"]], on="cluster_id", how="left")
    metrics["has_overlap"] = metrics["has_overlap"].fillna(False).astype(bool)
    metrics["qualifies_hub"] = metrics["qualifies_hub"] & metrics["has_overlap"]

    qualifying = metrics[metrics["qualifies_hub"]]
    if qualifying.empty:
        LOGGER.info("No bus clusters qualify as hubs.")
        empty = pd.DataFrame(columns=[*STOP_COLUMNS, "cluster_id", *METRIC_COLUMNS, *DIAGNOSTIC_COLUMNS, "type"])
        return HubResult(to_points_gdf(empty, config), metrics, overlap, clustered)

    best = _best_metrics_per_cluster(qualifying)
    diagnostics = format_hub_diagnostics(best["cluster_id"], am, pm, routes)
    hub_stops = clustered[clustered["cluster_id"].isin(best["cluster_id"])][[*STOP_COLUMNS, "cluster_id"]]
    hub_stops = hub_stops.merge(
        best[["cluster_id", "direction_key", "shared_streets", *METRIC_COLUMNS]], on="cluster_id", how="left"
    ).merge(diagnostics, on="cluster_id", how="left")
    hub_stops["type"] = "bus_hub"

    LOGGER.info("Total qualifying bus hub stops: %d in %d clusters.", len(hub_stops), len(best))
    return HubResult(to_points_gdf(hub_stops, config), metrics, overlap, clustered)


def identify_transit_hubs(
    stops: pd.DataFrame,
    routes: pd.DataFrame,
    trips: pd.DataFrame,
    stop_times: pd.DataFrame,
    calendar: Optional[pd.DataFrame],
    calendar_dates: Optional[pd.DataFrame],
    config: QualificationConfig,
    engine: Optional[GeometryEngine] = None,
) -> HubResult:
    """Rail stations and qualifying bus hubs in one point layer."""
    routed_stop_times = stop_times.drop(columns=["route_id"], errors="ignore").merge(
        trips[["trip_id", "route_id"]], on="trip_id", how="left"
    )
    rail = identify_rail_hubs(stops, routes, routed_stop_times, config.agency_profiles)

    bus = identify_bus_hubs(stops, routes, trips, stop_times, calendar, calendar_dates, config, engine)
    bus_rows = pd.DataFrame(bus.hubs.drop(columns="geometry"))
    # A rail station never doubles as a bus hub row.
    bus_rows = bus_rows[~bus_rows["stop_id"].isin(rail["stop_id"])]

    frames = [df for df in (rail, bus_rows) if not df.empty]
    combined = pd.concat(frames, ignore_index=True) if frames else bus_rows
    hubs = to_points_gdf(combined, config)
    LOGGER.info("Identified %d hubs: %d rail, %d bus.",
                len(hubs), int((hubs["type"] == "rail").sum()), int((hubs["type"] == "bus_hub").sum()))
    return HubResult(hubs, bus.cluster_metrics, bus.overlap, bus.clustered_stops)
