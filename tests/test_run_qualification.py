from __future__ import annotations

import geopandas as gpd
import pandas as pd
from conftest import build_feed, write_feed

from transit_qualification.run_qualification import export_results, run_qualification
from transit_qualification.utils.gtfs_helpers import load_gtfs_data
from transit_qualification.utils.qualification_config import QualificationConfig


def test_run_and_export_from_folder(tmp_path) -> None:
    """A feed written to disk yields three hub stops and one corridor segment."""
    folder = write_feed(tmp_path / "gtfs", build_feed())
    gtfs = load_gtfs_data(folder)

    result = run_qualification(gtfs, QualificationConfig())
    assert sorted(result.hubs.hubs["stop_id"]) == ["S1", "S2", "S3"]
    assert len(result.corridors.qualifying) == 1

    out = tmp_path / "out"
    gpkg = export_results(result, out, "run")
    assert gpkg.exists()
    assert len(gpd.read_file(gpkg, layer="hubs")) == 3

    corridors = pd.read_csv(out / "run_corridors.csv")
    assert corridors["route_ids"].tolist() == ["R1, R2"]
    assert (out / "run_hubs.csv").exists()


def test_feed_without_shapes_skips_corridors(tmp_path, caplog) -> None:
    tables = {k: v for k, v in build_feed().items() if k != "shapes"}
    gtfs = load_gtfs_data(write_feed(tmp_path / "gtfs", tables))

    with caplog.at_level("WARNING"):
        result = run_qualification(gtfs, QualificationConfig())

    assert result.corridors.qualifying.empty
    assert len(result.hubs.hubs) == 3
    assert "corridor segmentation skipped" in caplog.text


def test_setup_logging_replaces_handlers() -> None:
    import logging

    from transit_qualification.utils.logging_helper import setup_logging

    root = logging.getLogger()
    saved = (root.level, list(root.handlers))
    try:
        setup_logging(logging.DEBUG)
        setup_logging(logging.WARNING)
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
    finally:
        root.handlers[:] = saved[1]
        root.setLevel(saved[0])
