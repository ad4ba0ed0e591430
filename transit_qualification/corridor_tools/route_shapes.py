"""Route geometry and peak trip counts per route and direction.

Builds one LineString per GTFS shape and ties each shape to the
(agency, route, direction bucket) whose peak trips use it, together with that
route/direction's AM and PM trip counts.
"""

from __future__ import annotations

import logging

import geopandas as gpd
import pandas as pd
from shapely.geometry import LineString

from transit_qualification.frequency_tools.frequency_calculator import (
    calculate_peak_frequency,
    combine_am_pm_metrics,
)
from transit_qualification.utils.gtfs_helpers import require_columns, with_agency
from transit_qualification.utils.qualification_config import GTFS_CRS, QualificationConfig

LOGGER = logging.getLogger(__name__)

ROUTE_KEYS = ["agency", "route_id", "direction_key"]


def build_shapes_gdf(shapes: pd.DataFrame, crs: str = GTFS_CRS) -> gpd.GeoDataFrame:
    """Convert shapes.txt rows into one LineString per ``shape_id``.

    Points are ordered by ``shape_pt_sequence``; rows with unparseable
    coordinates are ignored and shapes left with fewer than two points are
    dropped with a warning.
    """
    require_columns(shapes, ["shape_id", "shape_pt_lat", "shape_pt_lon", "shape_pt_sequence"], "shapes")
    pts = shapes.copy()
    for col in ("shape_pt_lat", "shape_pt_lon", "shape_pt_sequence"):
        pts[col] = pd.to_numeric(pts[col], errors="coerce")
    pts = pts.dropna(subset=["shape_pt_lat", "shape_pt_lon", "shape_pt_sequence"])
    pts = pts.sort_values(["shape_id", "shape_pt_sequence"])

    records = []
    short = []
    for shape_id, grp in pts.groupby("shape_id", sort=True):
        coords = list(zip(grp["shape_pt_lon"], grp["shape_pt_lat"]))
        if len(coords) < 2:
            short.append(shape_id)
            continue
        records.append({"shape_id": shape_id, "geometry": LineString(coords)})

    all_ids = set(shapes["shape_id"].dropna())
    short.extend(sorted(all_ids - set(pts["shape_id"]) - set(short)))
    if short:
        LOGGER.warning("Dropped %d shapes with fewer than 2 valid points: %s", len(short), short[:10])

    return gpd.GeoDataFrame(records, columns=["shape_id", "geometry"], geometry="geometry", crs=crs)


def calculate_route_frequency(
    am_stop_times: pd.DataFrame,
    pm_stop_times: pd.DataFrame,
    config: QualificationConfig,
) -> pd.DataFrame:
    """AM/PM trips and intervals per (agency, route_id, direction_key)."""
    am = calculate_peak_frequency(am_stop_times, ROUTE_KEYS, config.am_peak)
    pm = calculate_peak_frequency(pm_stop_times, ROUTE_KEYS, config.pm_peak)
    metrics = combine_am_pm_metrics(am, pm, ROUTE_KEYS, config.am_peak, config.pm_peak)
    return metrics.drop(columns=["num_routes_am", "num_routes_pm", "num_routes_total"])


def link_route_shapes(
    am_stop_times: pd.DataFrame,
    pm_stop_times: pd.DataFrame,
    shapes_gdf: gpd.GeoDataFrame,
    config: QualificationConfig,
) -> gpd.GeoDataFrame:
    """One row per (agency, route, direction bucket, shape) with peak trips.

    Args:
        am_stop_times, pm_stop_times: Peak stop_times carrying ``trip_id``,
            ``route_id``, ``agency``, ``direction_key`` and ``shape_id``.
        shapes_gdf: Output of :func:`build_shapes_gdf`.
        config: Peak windows.

    Returns:
        GeoDataFrame in the shapes' CRS with ``trips_am``/``trips_pm`` (route
        level, not per shape) and the shape geometry. Route/directions with no
        peak trips or no usable shape are omitted.
    """
    for name, frame in (("AM stop_times", am_stop_times), ("PM stop_times", pm_stop_times)):
        require_columns(frame, ["trip_id", "route_id", "direction_key", "shape_id"], name)

    am = with_agency(am_stop_times)
    pm = with_agency(pm_stop_times)
    route_metrics = calculate_route_frequency(am, pm, config)
    route_metrics = route_metrics[route_metrics["trips_total"] > 0]

    used = pd.concat([am, pm], ignore_index=True)[[*ROUTE_KEYS, "shape_id"]]
    used = used.dropna(subset=["shape_id"]).drop_duplicates()
    linked = used.merge(route_metrics, on=ROUTE_KEYS, how="inner")

    missing = sorted(set(linked["shape_id"]) - set(shapes_gdf["shape_id"]))
    if missing:
        LOGGER.warning("%d peak shapes have no usable geometry and are skipped: %s", len(missing), missing[:10])
    linked = linked.merge(shapes_gdf[["shape_id", "geometry"]], on="shape_id", how="inner")

    out = gpd.GeoDataFrame(linked, geometry="geometry", crs=shapes_gdf.crs)
    out = out.sort_values([*ROUTE_KEYS, "shape_id"]).reset_index(drop=True)
    LOGGER.info("Linked %d route/direction shapes with peak service.", len(out))
    return out


def calculate_corridor_stop_metrics(
    am_stop_times: pd.DataFrame,
    pm_stop_times: pd.DataFrame,
    config: QualificationConfig,
) -> pd.DataFrame:
    """Unclustered per-stop frequency with a ``qualifies_corridor`` flag.

    Any number of routes counts; a stop qualifies when its AM or PM interval
    meets the threshold.
    """
    keys = ["stop_id", "agency"]
    am = calculate_peak_frequency(with_agency(am_stop_times), keys, config.am_peak)
    pm = calculate_peak_frequency(with_agency(pm_stop_times), keys, config.pm_peak)
    metrics = combine_am_pm_metrics(am, pm, keys, config.am_peak, config.pm_peak)
    threshold = config.frequency_threshold_min
    metrics["qualifies_corridor"] = (metrics["interval_am"] <= threshold) | (metrics["interval_pm"] <= threshold)
    return metrics
