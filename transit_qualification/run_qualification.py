"""Batch runner for hub and corridor qualification.

Loads a normalized GTFS folder, identifies qualifying hubs (rail stations and
verified bus clusters) and qualifying corridor segments, and writes:

  - ``<OUTPUT_NAME>.gpkg`` with ``hubs`` and ``corridors`` layers,
  - ``<OUTPUT_NAME>_hubs.csv`` and ``<OUTPUT_NAME>_corridors.csv`` attribute
    tables (no geometry).

Edit the Configuration section, then run ``python -m
transit_qualification.run_qualification``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import geopandas as gpd
import pandas as pd

from transit_qualification.corridor_tools.corridor_segmenter import CorridorResult, identify_corridors
from transit_qualification.frequency_tools.service_filters import (
    get_weekday_bus_trips,
    identify_bus_routes,
    identify_weekday_services,
    prepare_peak_stop_times,
)
from transit_qualification.hub_tools.agency_profiles import ILLINOIS_AGENCY_PROFILES
from transit_qualification.hub_tools.hub_qualifier import HubResult, identify_transit_hubs
from transit_qualification.utils.geometry_engine import GeometryEngine, ShapelyGeometryEngine
from transit_qualification.utils.gtfs_helpers import load_gtfs_data
from transit_qualification.utils.logging_helper import setup_logging
from transit_qualification.utils.qualification_config import QualificationConfig

# =============================================================================
# CONFIGURATION
# =============================================================================

GTFS_FOLDER = Path(r"C:\Path\To\Your\Normalized_GTFS")
OUTPUT_FOLDER = Path(r"C:\Path\To\Your\Output")
OUTPUT_NAME = "qualification"

LOG_LEVEL = logging.INFO

# Worker threads for corridor segmentation; 1 runs every group serially.
MAX_WORKERS = 4

# =============================================================================
# FUNCTIONS
# =============================================================================

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class QualificationResult:
    """Hub and corridor results of one run."""

    hubs: HubResult
    corridors: CorridorResult


def run_qualification(
    gtfs: dict[str, pd.DataFrame],
    config: QualificationConfig,
    engine: Optional[GeometryEngine] = None,
) -> QualificationResult:
    """Run both pathways on already-loaded GTFS tables.

    Args:
        gtfs: Mapping of file stem to DataFrame, as from ``load_gtfs_data``.
            ``shapes`` is optional; without it no corridors are produced.
        config: Run configuration.
        engine: Geometry backend shared by both pathways.

    Returns:
        :class:`QualificationResult`.
    """
    engine = engine or ShapelyGeometryEngine()
    calendar = gtfs.get("calendar")
    calendar_dates = gtfs.get("calendar_dates")

    LOGGER.info("=== Identifying hubs ===")
    hubs = identify_transit_hubs(
        gtfs["stops"], gtfs["routes"], gtfs["trips"], gtfs["stop_times"], calendar, calendar_dates, config, engine
    )

    LOGGER.info("=== Identifying corridors ===")
    weekday = identify_weekday_services(calendar, calendar_dates)
    bus_trips = get_weekday_bus_trips(gtfs["trips"], weekday, identify_bus_routes(gtfs["routes"]))
    if "shapes" not in gtfs or "shape_id" not in bus_trips.columns:
        LOGGER.warning("Feed has no shapes; corridor segmentation skipped.")
        shapes = pd.DataFrame(columns=["shape_id", "shape_pt_lat", "shape_pt_lon", "shape_pt_sequence"])
        am = pm = pd.DataFrame(columns=["trip_id", "route_id", "agency", "direction_key", "shape_id"])
    else:
        shapes = gtfs["shapes"]
        am, pm = prepare_peak_stop_times(gtfs["stop_times"], bus_trips, config)
    corridors = identify_corridors(am, pm, shapes, config, engine)

    return QualificationResult(hubs=hubs, corridors=corridors)


def _flatten_lists(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    # GeoPackage and CSV have no list type.
    out = gdf.copy()
    for col in out.columns:
        if col != out.geometry.name and out[col].map(lambda v: isinstance(v, list)).any():
            out[col] = out[col].map(lambda v: ", ".join(map(str, v)) if isinstance(v, list) else v)
    return out


def export_results(result: QualificationResult, output_folder: Path, output_name: str) -> Path:
    """Write the hub and corridor layers to a GeoPackage plus CSV tables."""
    output_folder.mkdir(parents=True, exist_ok=True)
    gpkg = output_folder / f"{output_name}.gpkg"

    layers = {"hubs": result.hubs.hubs, "corridors": result.corridors.qualifying}
    for layer, gdf in layers.items():
        flat = _flatten_lists(gdf)
        flat.drop(columns=flat.geometry.name).to_csv(output_folder / f"{output_name}_{layer}.csv", index=False)
        if flat.empty:
            LOGGER.info("No %s to write to the GeoPackage.", layer)
            continue
        flat.to_file(gpkg, layer=layer, driver="GPKG")
        LOGGER.info("Wrote %d %s to %s.", len(flat), layer, gpkg)
    return gpkg


def main() -> None:
    """Load the configured feed, qualify hubs and corridors, export results."""
    setup_logging(LOG_LEVEL)
    config = QualificationConfig(agency_profiles=ILLINOIS_AGENCY_PROFILES, max_workers=MAX_WORKERS)

    gtfs = load_gtfs_data(str(GTFS_FOLDER))
    result = run_qualification(gtfs, config)
    export_results(result, OUTPUT_FOLDER, OUTPUT_NAME)

    LOGGER.info(
        "Done: %d hubs, %d qualifying corridor segments.",
        len(result.hubs.hubs),
        len(result.corridors.qualifying),
    )


if __name__ == "__main__":
    main()
