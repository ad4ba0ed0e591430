"""Spatial clustering of stops by chained proximity.

Each stop is buffered by the clustering radius; two stops whose buffers
intersect are adjacent, and clusters are the connected components of that
adjacency graph. With a 150 ft radius, two stops 280 ft from a shared
neighbour join the same cluster even when they are 560 ft from each other.

Typical usage:
    clustered = cluster_stops(stops, radius_ft=150.0)
"""

from __future__ import annotations

import logging
from typing import Optional

import geopandas as gpd
import networkx as nx
import pandas as pd

from transit_qualification.utils.geometry_engine import GeometryEngine, ShapelyGeometryEngine
from transit_qualification.utils.gtfs_helpers import require_columns
from transit_qualification.utils.qualification_config import GTFS_CRS, PROJECTED_CRS

LOGGER = logging.getLogger(__name__)

REQUIRED_STOP_COLUMNS = ["stop_id", "stop_lat", "stop_lon"]


def drop_invalid_coordinates(stops: pd.DataFrame) -> pd.DataFrame:
    """Return *stops* with numeric, in-range coordinates only.

    Rows with missing, non-numeric or out-of-range lat/lon are dropped with a
    warning rather than failing the run.
    """
    require_columns(stops, REQUIRED_STOP_COLUMNS, "stops")
    out = stops.copy()
    out["stop_lat"] = pd.to_numeric(out["stop_lat"], errors="coerce")
    out["stop_lon"] = pd.to_numeric(out["stop_lon"], errors="coerce")
    valid = (
        out["stop_lat"].between(-90, 90)
        & out["stop_lon"].between(-180, 180)
        & ~((out["stop_lat"] == 0) & (out["stop_lon"] == 0))
    )
    dropped = int((~valid).sum())
    if dropped:
        LOGGER.warning("Dropped %s stops with missing or invalid coordinates.", dropped)
    return out[valid].reset_index(drop=True)


def build_stops_gdf(stops: pd.DataFrame, crs: str = GTFS_CRS) -> gpd.GeoDataFrame:
    """Point GeoDataFrame of stops in *crs* (coordinates must already be valid)."""
    return gpd.GeoDataFrame(
        stops.copy(),
        geometry=gpd.points_from_xy(stops["stop_lon"], stops["stop_lat"]),
        crs=crs,
    )


def cluster_stops(
    stops: pd.DataFrame,
    radius_ft: float,
    projected_crs: Optional[str] = PROJECTED_CRS,
    engine: Optional[GeometryEngine] = None,
) -> pd.DataFrame:
    """Assign every stop with valid coordinates to exactly one cluster.

    Args:
        stops: Stops with ``stop_id``, ``stop_lat`` and ``stop_lon``.
        radius_ft: Clustering radius in feet.
        projected_crs: Planar CRS for distance work; ``None`` estimates a
            local UTM zone.
        engine: Geometry backend; defaults to :class:`ShapelyGeometryEngine`.

    Returns:
        A copy of the valid stops, in input order, with ``cluster_id``
        (1-based, numbered in order of each cluster's first stop),
        ``cluster_lat``/``cluster_lon`` (member means) and
        ``stops_in_cluster``.

    Raises:
        ValueError: ``radius_ft`` is not positive or columns are missing.
    """
    if radius_ft <= 0:
        raise ValueError("radius_ft must be positive.")
    engine = engine or ShapelyGeometryEngine()

    valid = drop_invalid_coordinates(stops)
    if valid.empty:
        LOGGER.info("No stops to cluster.")
        return valid.assign(cluster_id=pd.Series(dtype=int), cluster_lat=pd.Series(dtype=float),
                            cluster_lon=pd.Series(dtype=float), stops_in_cluster=pd.Series(dtype=int))

    gdf = build_stops_gdf(valid)
    crs = engine.resolve_crs(gdf, projected_crs)
    projected = engine.project(gdf, crs)
    radius = radius_ft * engine.feet_to_units(crs)

    graph = nx.Graph()
    graph.add_nodes_from(range(len(projected)))
    graph.add_edges_from(engine.neighbor_pairs(projected.geometry, radius))

    labels = [0] * len(projected)
    components = sorted(nx.connected_components(graph), key=min)
    for cluster_id, members in enumerate(components, start=1):
        for pos in members:
            labels[pos] = cluster_id

    out = valid.copy()
    out["cluster_id"] = labels
    grouped = out.groupby("cluster_id")
    out["cluster_lat"] = grouped["stop_lat"].transform("mean")
    out["cluster_lon"] = grouped["stop_lon"].transform("mean")
    out["stops_in_cluster"] = grouped["stop_id"].transform("size").astype(int)

    LOGGER.info("Created %d clusters from %d stops (%.0f ft radius).",
                len(components), len(out), radius_ft)
    return out


def cluster_summary(clustered: pd.DataFrame) -> pd.DataFrame:
    """One row per cluster: centroid, member count and sorted member stop_ids."""
    require_columns(clustered, ["cluster_id", "stop_id", "cluster_lat", "cluster_lon"], "clustered stops")
    summary = (
        clustered.groupby("cluster_id", sort=True)
        .agg(
            cluster_lat=("cluster_lat", "first"),
            cluster_lon=("cluster_lon", "first"),
            stops_in_cluster=("stop_id", "size"),
            stop_ids=("stop_id", lambda s: sorted(set(s))),
        )
        .reset_index()
    )
    return summary
