"""Geometry operations used by the clustering and corridor tools.

All projection, buffering, spatial-index, union, noding, snapping,
simplification and validity-repair calls go through a :class:`GeometryEngine`.
:class:`ShapelyGeometryEngine` is the GeoPandas/Shapely/pyproj implementation
used by default; tests or alternate backends can supply anything that
satisfies the protocol.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple

import geopandas as gpd
import shapely
from shapely import STRtree
from pyproj import CRS
from shapely.errors import GEOSException
from shapely.geometry import LineString, MultiLineString
from shapely.geometry.base import BaseGeometry
from shapely.ops import linemerge, unary_union
from shapely.validation import make_valid

LOGGER = logging.getLogger(__name__)

FEET_TO_METERS = 0.3048

Pair = Tuple[int, int]


class GeometryError(RuntimeError):
    """Raised when a geometry operation cannot produce a usable result."""


class GeometryEngine(Protocol):
    """Capabilities the qualification tools need from a geometry backend."""

    def resolve_crs(self, gdf: gpd.GeoDataFrame, projected_crs: Optional[str]) -> CRS: ...

    def feet_to_units(self, crs: CRS) -> float: ...

    def project(self, gdf: gpd.GeoDataFrame, crs: CRS) -> gpd.GeoDataFrame: ...

    def repair(self, geoms: gpd.GeoSeries, label: str) -> gpd.GeoSeries: ...

    def neighbor_pairs(self, points: gpd.GeoSeries, radius: float) -> List[Pair]: ...

    def intersecting_pairs(self, lines: gpd.GeoSeries) -> List[Pair]: ...

    def build_index(self, geoms: Sequence[BaseGeometry]) -> STRtree: ...

    def candidates(self, index: STRtree, target: BaseGeometry, distance: float) -> List[int]: ...

    def simplify(self, lines: Sequence[BaseGeometry], tolerance: float) -> List[BaseGeometry]: ...

    def snap(self, lines: Sequence[BaseGeometry], tolerance: float) -> List[BaseGeometry]: ...

    def node(self, lines: Sequence[BaseGeometry]) -> List[LineString]: ...

    def merge(self, lines: Sequence[LineString]) -> List[LineString]: ...

    def union(self, geoms: Sequence[BaseGeometry]) -> BaseGeometry: ...

    def coverage_zones(self, geoms: Sequence[BaseGeometry], buffer: float) -> List[BaseGeometry]: ...

    def covered_length(self, segment: BaseGeometry, zone: BaseGeometry) -> float: ...


@contextmanager
def _geos_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (GEOSException, ValueError) as exc:
        raise GeometryError(f"{operation} failed: {exc}") from exc


def get_crs_unit(crs_code: str | CRS) -> Optional[str]:
    """Return the linear unit name of a CRS, or ``None`` if it has no axes."""
    crs = CRS.from_user_input(crs_code)
    if crs.axis_info:
        return crs.axis_info[0].unit_name
    LOGGER.error("CRS %s has no axis information.", crs_code)
    return None


def feet_to_crs_units(crs_code: str | CRS) -> float:
    """Number of CRS linear units in one international foot.

    Raises:
        ValueError: The CRS is geographic or has no linear unit.
    """
    crs = CRS.from_user_input(crs_code)
    if not crs.is_projected:
        raise ValueError(f"CRS {crs.to_string()} is not projected; distances in feet are undefined.")
    if not crs.axis_info or not crs.axis_info[0].unit_conversion_factor:
        raise ValueError(f"CRS {crs.to_string()} has no linear unit.")
    meters_per_unit = crs.axis_info[0].unit_conversion_factor
    return FEET_TO_METERS / meters_per_unit


def _iter_lines(geom: BaseGeometry) -> Iterable[LineString]:
    if geom is None or geom.is_empty:
        return
    if isinstance(geom, LineString):
        yield geom
    elif isinstance(geom, MultiLineString):
        yield from geom.geoms
    elif hasattr(geom, "geoms"):
        for part in geom.geoms:
            yield from _iter_lines(part)


class ShapelyGeometryEngine:
    """GeoPandas/Shapely implementation of :class:`GeometryEngine`."""

    def resolve_crs(self, gdf: gpd.GeoDataFrame, projected_crs: Optional[str]) -> CRS:
        """Use *projected_crs* if given, else estimate a UTM zone from *gdf*."""
        if projected_crs is not None:
            return CRS.from_user_input(projected_crs)
        if gdf.empty:
            raise GeometryError("Cannot estimate a projected CRS from an empty layer.")
        return gdf.estimate_utm_crs()

    def feet_to_units(self, crs: CRS) -> float:
        return feet_to_crs_units(crs)

    def project(self, gdf: gpd.GeoDataFrame, crs: CRS) -> gpd.GeoDataFrame:
        if gdf.crs is None:
            raise GeometryError("Input layer has no CRS; cannot project.")
        return gdf.to_crs(crs)

    def repair(self, geoms: gpd.GeoSeries, label: str) -> gpd.GeoSeries:
        """Repair invalid geometries; unrepairable or empty ones become ``None``.

        The returned series keeps the input index so callers can drop the
        ``None`` rows themselves.
        """
        out = geoms.copy()
        invalid = ~out.is_valid & out.notna()
        if invalid.any():
            LOGGER.warning("Repairing %d invalid %s geometries.", int(invalid.sum()), label)
            out[invalid] = [make_valid(g) for g in out[invalid]]
        unusable = out.isna() | out.is_empty | ~out.is_valid
        if unusable.any():
            LOGGER.warning("Dropping %d %s geometries that are empty or unrepairable.",
                           int(unusable.sum()), label)
            out[unusable] = None
        return out

    def neighbor_pairs(self, points: gpd.GeoSeries, radius: float) -> List[Pair]:
        """Positional pairs ``(i, j)``, ``i < j``, whose radius buffers intersect.

        Two stops pair up when they are within ``2 * radius`` of each other.
        """
        if len(points) < 2:
            return []
        with _geos_errors("Neighbor search"):
            buffers = points.buffer(radius)
            left, right = buffers.sindex.query(buffers.values, predicate="intersects")
        keep = left < right
        return sorted(zip(left[keep].tolist(), right[keep].tolist()))

    def intersecting_pairs(self, lines: gpd.GeoSeries) -> List[Pair]:
        """Positional pairs ``(i, j)``, ``i < j``, of geometries that intersect."""
        if len(lines) < 2:
            return []
        with _geos_errors("Intersection search"):
            left, right = lines.sindex.query(lines.values, predicate="intersects")
        keep = left < right
        return sorted(zip(left[keep].tolist(), right[keep].tolist()))

    def build_index(self, geoms: Sequence[BaseGeometry]) -> STRtree:
        return STRtree(list(geoms))

    def candidates(self, index: STRtree, target: BaseGeometry, distance: float) -> List[int]:
        """Positions in *index* that come within *distance* of *target*."""
        with _geos_errors("Candidate search"):
            if distance > 0:
                hits = index.query(target, predicate="dwithin", distance=distance)
            else:
                hits = index.query(target, predicate="intersects")
        return sorted(hits.tolist())

    def simplify(self, lines: Sequence[BaseGeometry], tolerance: float) -> List[BaseGeometry]:
        if tolerance <= 0:
            return list(lines)
        with _geos_errors("Simplification"):
            return [g.simplify(tolerance, preserve_topology=True) for g in lines]

    def snap(self, lines: Sequence[BaseGeometry], tolerance: float) -> List[BaseGeometry]:
        """Snap each line onto the lines within *tolerance* of it."""
        if tolerance <= 0 or len(lines) < 2:
            return list(lines)
        tree = self.build_index(lines)
        snapped: List[BaseGeometry] = []
        with _geos_errors("Snapping"):
            for idx, geom in enumerate(lines):
                near = [j for j in self.candidates(tree, geom, tolerance) if j != idx]
                if not near:
                    snapped.append(geom)
                    continue
                others = MultiLineString([part for j in near for part in _iter_lines(lines[j])])
                snapped.append(shapely.snap(geom, others, tolerance))
        return snapped

    def node(self, lines: Sequence[BaseGeometry]) -> List[LineString]:
        """Split the union of *lines* at every intersection.

        Raises:
            GeometryError: GEOS failed to node the input.
        """
        with _geos_errors("Noding"):
            noded = unary_union(list(lines))
        pieces = [piece for piece in _iter_lines(noded) if piece.length > 0]
        if not pieces:
            raise GeometryError("Noding produced no linework.")
        return pieces

    def merge(self, lines: Sequence[LineString]) -> List[LineString]:
        """Merge pieces that meet end to end with no third piece at the joint."""
        if len(lines) < 2:
            return list(lines)
        with _geos_errors("Line merge"):
            return list(_iter_lines(linemerge(list(lines))))

    def union(self, geoms: Sequence[BaseGeometry]) -> BaseGeometry:
        with _geos_errors("Union"):
            merged = unary_union(list(geoms))
            if not merged.is_valid:
                merged = make_valid(merged)
        if merged.is_empty:
            raise GeometryError("Union produced an empty geometry.")
        return merged

    def coverage_zones(self, geoms: Sequence[BaseGeometry], buffer: float) -> List[BaseGeometry]:
        """Buffer each geometry once for repeated :meth:`covered_length` calls."""
        if buffer <= 0:
            return list(geoms)
        with _geos_errors("Buffering"):
            return [g.buffer(buffer) for g in geoms]

    def covered_length(self, segment: BaseGeometry, zone: BaseGeometry) -> float:
        """Length of *segment* lying inside *zone*."""
        if segment.is_empty or zone.is_empty:
            return 0.0
        with _geos_errors("Coverage"):
            try:
                return float(segment.intersection(zone).length)
            except GEOSException:
                return float(segment.intersection(make_valid(zone)).length)
