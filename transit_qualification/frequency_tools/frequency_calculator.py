"""Peak-period trip counts and service intervals.

Given stop_times already restricted to a peak window, counts distinct trips and
distinct routes per group and converts the trip count into an average
interval (window minutes / trips). AM and PM results are then combined into
the totals used by the hub and corridor rules.
"""

from __future__ import annotations

import logging
import math
from typing import List, Sequence

import numpy as np
import pandas as pd

from transit_qualification.utils.gtfs_helpers import require_columns
from transit_qualification.utils.qualification_config import PeakWindow

LOGGER = logging.getLogger(__name__)


def compute_interval(duration_minutes: float, trips: float) -> float:
    """Average minutes between trips; ``inf`` when there are no trips."""
    if trips is None or pd.isna(trips) or trips <= 0:
        return math.inf
    return float(duration_minutes) / float(trips)


def _interval_series(duration_minutes: float, trips: pd.Series) -> pd.Series:
    trips = trips.astype(float)
    with np.errstate(divide="ignore"):
        intervals = duration_minutes / trips.where(trips > 0, np.nan)
    return intervals.fillna(math.inf)


def determine_grouping_cols(base_cols: Sequence[str], stop_times: pd.DataFrame) -> List[str]:
    """Append ``direction_key`` to *base_cols* when the frame carries it."""
    cols = list(base_cols)
    if "direction_key" in stop_times.columns and "direction_key" not in cols:
        cols.append("direction_key")
    return cols


def calculate_peak_frequency(
    peak_stop_times: pd.DataFrame,
    grouping_cols: Sequence[str],
    window: PeakWindow,
) -> pd.DataFrame:
    """Count trips and routes per group within one peak window.

    Args:
        peak_stop_times: stop_times filtered to *window*, with ``trip_id``,
            ``route_id`` and every column in *grouping_cols*.
        grouping_cols: Keys to group by (e.g. cluster_id, agency, direction_key).
        window: Supplies the column suffix and the duration.

    Returns:
        One row per group with ``num_routes_<p>``, ``trips_<p>`` and
        ``interval_<p>`` where ``<p>`` is the window name.
    """
    cols = list(grouping_cols)
    require_columns(peak_stop_times, ["trip_id", "route_id", *cols], "peak stop_times")
    suffix = window.name
    if peak_stop_times.empty:
        return pd.DataFrame(
            columns=[*cols, f"num_routes_{suffix}", f"trips_{suffix}", f"interval_{suffix}"]
        )

    grouped = peak_stop_times.groupby(cols, dropna=False, sort=True)
    metrics = grouped.agg(
        **{
            f"num_routes_{suffix}": ("route_id", "nunique"),
            f"trips_{suffix}": ("trip_id", "nunique"),
        }
    ).reset_index()
    metrics[f"interval_{suffix}"] = _interval_series(window.duration_minutes, metrics[f"trips_{suffix}"])
    LOGGER.debug("Computed %s metrics for %d groups.", suffix.upper(), len(metrics))
    return metrics


def combine_am_pm_metrics(
    am_metrics: pd.DataFrame,
    pm_metrics: pd.DataFrame,
    key_cols: Sequence[str],
    am_window: PeakWindow,
    pm_window: PeakWindow,
) -> pd.DataFrame:
    """Outer-join AM and PM metrics and derive the combined totals.

    Groups missing from one period get zero trips/routes and an infinite
    interval for it. ``num_routes_total`` is the larger of the two period
    route counts, ``trips_total`` is their sum, and ``interval_combined``
    spreads both windows' minutes over all trips.
    """
    am, pm = am_window.name, pm_window.name
    merged = am_metrics.merge(pm_metrics, on=list(key_cols), how="outer")

    for period in (am, pm):
        for col in (f"num_routes_{period}", f"trips_{period}"):
            merged[col] = merged[col].fillna(0).astype(int)
        merged[f"interval_{period}"] = merged[f"interval_{period}"].astype(float).fillna(math.inf)

    merged["num_routes_total"] = merged[[f"num_routes_{am}", f"num_routes_{pm}"]].max(axis=1)
    merged["trips_total"] = merged[f"trips_{am}"] + merged[f"trips_{pm}"]
    merged["interval_combined"] = _interval_series(
        am_window.duration_minutes + pm_window.duration_minutes, merged["trips_total"]
    )
    return merged.sort_values(list(key_cols)).reset_index(drop=True)
