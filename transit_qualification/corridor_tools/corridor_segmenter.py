"""Corridor segmentation and combined-frequency qualification.

Streets that carry several routes can meet the frequency test jointly even when
no single route does. For each (agency, direction bucket) group this module:

  1. keeps shapes that touch no other shape as whole segments,
  2. nodes the overlapping shapes into minimal pieces (after optional
     simplification and snapping of near-coincident linework),
  3. attributes each piece to the shapes that cover it, dropping slivers,
  4. sums peak trips across the covering routes (each route/direction once,
     however many shape variants it has) and checks the resulting intervals
     against the threshold.

Linework that cannot be snapped, noded or attributed falls back to a single
unsegmented union with a warning instead of aborting the run; if even the
union fails those shapes are dropped with a warning.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Hashable, List, Mapping, Optional, Sequence, Tuple

import geopandas as gpd
import networkx as nx
import pandas as pd
from shapely.geometry.base import BaseGeometry

from transit_qualification.corridor_tools.route_shapes import build_shapes_gdf, link_route_shapes
from transit_qualification.frequency_tools.frequency_calculator import compute_interval
from transit_qualification.utils.geometry_engine import GeometryEngine, GeometryError, ShapelyGeometryEngine
from transit_qualification.utils.gtfs_helpers import DIRECTION_KEYS, require_columns
from transit_qualification.utils.qualification_config import QualificationConfig

LOGGER = logging.getLogger(__name__)

GroupKey = Tuple[str, str]  # (agency, direction_key)

SEGMENTATION_ISOLATED = "isolated"
SEGMENTATION_NODED = "noded"
SEGMENTATION_UNSEGMENTED = "unsegmented"

LINKED_COLUMNS = ["agency", "route_id", "direction_key", "shape_id", "trips_am", "trips_pm"]


def _bucket_columns(prefix: str) -> List[str]:
    return [f"{prefix}_{period}_dir{key}" if key != "combined" else f"{prefix}_{period}_combined"
            for period in ("am", "pm") for key in DIRECTION_KEYS]


TRIP_BUCKET_COLUMNS = _bucket_columns("trips")
INTERVAL_BUCKET_COLUMNS = _bucket_columns("interval")
SEGMENT_COLUMNS = [
    "segment_id",
    "agency",
    "direction_key",
    "route_ids",
    "shape_ids",
    "route_count",
    "segment_length_ft",
    "trips_am",
    "trips_pm",
    *TRIP_BUCKET_COLUMNS,
    *INTERVAL_BUCKET_COLUMNS,
    "segmentation",
    "qualifies_corridor",
    "geometry",
]


@dataclass(frozen=True, slots=True)
class RawSegment:
    """A piece of linework and the group rows that cover it."""

    geometry: BaseGeometry
    members: Tuple[int, ...]
    segmentation: str


@dataclass(frozen=True)
class CorridorResult:
    """All segments plus the qualifying subset, both in the output CRS."""

    segments: gpd.GeoDataFrame
    qualifying: gpd.GeoDataFrame
    linked_shapes: gpd.GeoDataFrame


def attribute_covering_shapes(ratios: Mapping[Hashable, float], tolerance: float) -> List[Hashable]:
    """Pick the shapes that cover a segment.

    Every shape whose coverage ratio reaches *tolerance* is kept. When none
    does, the single best-covering shape is kept so the segment always has an
    owner; ties go to the smallest key.

    >>> attribute_covering_shapes({"A": 0.95, "B": 0.4}, 0.9)
    ['A']
    >>> attribute_covering_shapes({"A": 0.5, "B": 0.4}, 0.9)
    ['A']
    """
    if not ratios:
        return []
    keep = sorted(key for key, ratio in ratios.items() if ratio >= tolerance)
    if keep:
        return keep
    best = min(ratios, key=lambda key: (-ratios[key], key))
    return [best]


def coverage_ratios(
    segment: BaseGeometry,
    zones: Mapping[int, BaseGeometry],
    candidates: Sequence[int],
    engine: GeometryEngine,
) -> Dict[int, float]:
    """Share of *segment*'s length that lies inside each candidate's coverage zone."""
    length = segment.length
    if length <= 0:
        return {}
    return {idx: min(engine.covered_length(segment, zones[idx]) / length, 1.0) for idx in candidates}


def _node_component(
    geoms: Sequence[BaseGeometry],
    members: Sequence[int],
    tolerance: float,
    coverage_buffer: float,
    min_length: float,
    engine: GeometryEngine,
) -> List[RawSegment]:
    # Node, tag each piece with the shapes covering it, then merge runs of
    # pieces that share the same owners so segments end only where the
    # set of routes changes.
    member_geoms = [geoms[i] for i in members]
    pieces = engine.node(member_geoms)
    index = engine.build_index(member_geoms)
    zones = dict(zip(members, engine.coverage_zones(member_geoms, coverage_buffer)))

    by_owner: Dict[Tuple[int, ...], List[BaseGeometry]] = {}
    for piece in pieces:
        candidates = [members[h] for h in engine.candidates(index, piece, coverage_buffer)]
        owners = tuple(attribute_covering_shapes(coverage_ratios(piece, zones, candidates, engine), tolerance))
        if owners:
            by_owner.setdefault(owners, []).append(piece)

    segments: List[RawSegment] = []
    slivers = 0
    for owners, owned in sorted(by_owner.items()):
        for merged in engine.merge(owned):
            if merged.length < min_length:
                slivers += 1
                continue
            segments.append(RawSegment(merged, owners, SEGMENTATION_NODED))
    if slivers:
        LOGGER.debug("Discarded %d slivers shorter than the minimum segment length.", slivers)
    return segments


def _unsegmented(
    geoms: Sequence[BaseGeometry],
    members: Sequence[int],
    engine: GeometryEngine,
    exc: GeometryError,
) -> List[RawSegment]:
    LOGGER.warning(
        "Segmentation failed for %d shapes (%s); keeping them as one unsegmented region.",
        len(members),
        exc,
    )
    try:
        merged = engine.union([geoms[i] for i in members])
    except GeometryError as union_exc:
        LOGGER.warning("Dropping %d shapes that could not be unioned either: %s", len(members), union_exc)
        return []
    return [RawSegment(merged, tuple(members), SEGMENTATION_UNSEGMENTED)]


def segment_group(
    group: gpd.GeoDataFrame,
    config: QualificationConfig,
    feet: float,
    engine: GeometryEngine,
) -> List[RawSegment]:
    """Split one (agency, direction) group into covered segments.

    A geometry failure while snapping or finding overlaps degrades the whole
    group to one unsegmented region; a failure while noding or attributing a
    component degrades only that component.

    Args:
        group: Projected linked shapes for one group, positionally indexed.
        config: Segmentation tolerances (in feet).
        feet: CRS units per foot.
        engine: Geometry backend.

    Returns:
        Segments whose ``members`` are positions into *group*.
    """
    params = config.segmentation
    raw = list(group.geometry)
    try:
        geoms = engine.simplify(raw, params.simplify_tolerance_ft * feet)
        geoms = engine.snap(geoms, params.snap_tolerance_ft * feet)
        pairs = engine.intersecting_pairs(gpd.GeoSeries(geoms, crs=group.crs))
    except GeometryError as exc:
        return _unsegmented(raw, list(range(len(raw))), engine, exc)

    graph = nx.Graph()
    graph.add_nodes_from(range(len(geoms)))
    graph.add_edges_from(pairs)

    segments: List[RawSegment] = []
    for component in sorted(nx.connected_components(graph), key=min):
        members = sorted(component)
        if len(members) == 1:
            segments.append(RawSegment(geoms[members[0]], (members[0],), SEGMENTATION_ISOLATED))
            continue
        try:
            segments.extend(
                _node_component(
                    geoms,
                    members,
                    params.coverage_tolerance,
                    params.coverage_buffer_ft * feet,
                    params.min_segment_length_ft * feet,
                    engine,
                )
            )
        except GeometryError as exc:
            segments.extend(_unsegmented(geoms, members, engine, exc))
    return segments


def aggregate_segment(
    segment: RawSegment,
    group: pd.DataFrame,
    direction_key: str,
    config: QualificationConfig,
) -> Dict[str, object]:
    """Sum trips over a segment's routes, one contribution per route/direction."""
    rows = group.iloc[list(segment.members)]
    routes = rows.drop_duplicates(subset=["route_id", "direction_key"])

    trips_am = int(routes["trips_am"].sum())
    trips_pm = int(routes["trips_pm"].sum())
    record: Dict[str, object] = {
        "route_ids": sorted(routes["route_id"].unique().tolist()),
        "shape_ids": sorted(rows["shape_id"].unique().tolist()),
        "route_count": int(len(routes)),
        "trips_am": trips_am,
        "trips_pm": trips_pm,
        "segmentation": segment.segmentation,
    }

    threshold = config.frequency_threshold_min
    qualifies = False
    for period, total, window in (("am", trips_am, config.am_peak), ("pm", trips_pm, config.pm_peak)):
        for key in DIRECTION_KEYS:
            suffix = f"dir{key}" if key != "combined" else "combined"
            trips = total if key == direction_key else 0
            interval = compute_interval(window.duration_minutes, trips)
            record[f"trips_{period}_{suffix}"] = trips
            record[f"interval_{period}_{suffix}"] = interval
            qualifies = qualifies or interval <= threshold
    record["qualifies_corridor"] = qualifies
    return record


def _process_group(
    key: GroupKey,
    group: gpd.GeoDataFrame,
    config: QualificationConfig,
    feet: float,
    engine: GeometryEngine,
) -> List[Dict[str, object]]:
    agency, direction_key = key
    group = group.reset_index(drop=True)
    records = []
    for segment in segment_group(group, config, feet, engine):
        record = aggregate_segment(segment, group, direction_key, config)
        record.update(
            agency=agency,
            direction_key=direction_key,
            segment_length_ft=segment.geometry.length / feet,
            geometry=segment.geometry,
        )
        records.append(record)
    LOGGER.debug("Group %s/%s: %d shapes -> %d segments.", agency, direction_key, len(group), len(records))
    return records


def segment_corridors(
    linked_shapes: gpd.GeoDataFrame,
    config: QualificationConfig,
    engine: Optional[GeometryEngine] = None,
) -> gpd.GeoDataFrame:
    """Segment every (agency, direction) group and flag qualifying segments.

    Args:
        linked_shapes: Output of ``link_route_shapes`` (any CRS with one set).
        config: Thresholds, tolerances, CRSs and ``max_workers``.
        engine: Geometry backend.

    Returns:
        All segments in ``config.output_crs`` with :data:`SEGMENT_COLUMNS`,
        ordered by group then by position within the group.
    """
    engine = engine or ShapelyGeometryEngine()
    require_columns(linked_shapes, LINKED_COLUMNS, "linked shapes")
    if linked_shapes.empty:
        LOGGER.info("No route shapes with peak service; no corridor segments.")
        return gpd.GeoDataFrame(columns=SEGMENT_COLUMNS, geometry="geometry", crs=config.output_crs)

    crs = engine.resolve_crs(linked_shapes, config.projected_crs)
    projected = engine.project(linked_shapes, crs)
    projected = projected.copy()
    projected["geometry"] = engine.repair(projected.geometry, "route shape")
    projected = projected[projected.geometry.notna()]
    feet = engine.feet_to_units(crs)

    tasks = [(key, grp) for key, grp in projected.groupby(["agency", "direction_key"], sort=True)]
    if config.max_workers > 1 and len(tasks) > 1:
        with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
            results = list(pool.map(lambda t: _process_group(t[0], t[1], config, feet, engine), tasks))
    else:
        results = [_process_group(key, grp, config, feet, engine) for key, grp in tasks]

    records = [record for group_records in results for record in group_records]
    if not records:
        return gpd.GeoDataFrame(columns=SEGMENT_COLUMNS, geometry="geometry", crs=config.output_crs)

    segments = gpd.GeoDataFrame(records, geometry="geometry", crs=crs)
    segments.insert(0, "segment_id", range(1, len(segments) + 1))
    segments = segments[SEGMENT_COLUMNS].to_crs(config.output_crs)

    LOGGER.info(
        "Built %d corridor segments in %d groups; %d qualify.",
        len(segments),
        len(tasks),
        int(segments["qualifies_corridor"].sum()),
    )
    return segments


def identify_corridors(
    am_stop_times: pd.DataFrame,
    pm_stop_times: pd.DataFrame,
    shapes: pd.DataFrame,
    config: QualificationConfig,
    engine: Optional[GeometryEngine] = None,
) -> CorridorResult:
    """Peak stop_times and shapes.txt in, segmented corridors out."""
    shapes_gdf = build_shapes_gdf(shapes, config.gtfs_crs)
    linked = link_route_shapes(am_stop_times, pm_stop_times, shapes_gdf, config)
    segments = segment_corridors(linked, config, engine)
    qualifying = segments[segments["qualifies_corridor"].astype(bool)].reset_index(drop=True)
    if qualifying.empty:
        LOGGER.info("No corridor segments qualify.")
    return CorridorResult(segments=segments, qualifying=qualifying, linked_shapes=linked)
