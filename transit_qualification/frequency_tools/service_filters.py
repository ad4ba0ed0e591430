"""Weekday, bus and peak-window filters applied before frequency counting.

The hub and corridor tools only look at regular weekday service. This module
narrows a feed down to:

  - service_ids that run every weekday (calendar.txt, or calendar_dates.txt
    for feeds that publish service as explicit dates only),
  - bus routes (GTFS route_type 3 by default),
  - the trips that combine the two, tagged with a direction bucket,
  - stop_times for those trips that fall inside each peak window.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

import pandas as pd

from transit_qualification.utils.gtfs_helpers import (
    add_direction_key,
    parse_gtfs_time,
    parse_gtfs_time_series,
    require_columns,
    with_agency,
)
from transit_qualification.utils.qualification_config import PeakWindow, QualificationConfig

LOGGER = logging.getLogger(__name__)

WEEKDAY_COLUMNS = ["monday", "tuesday", "wednesday", "thursday", "friday"]
BUS_ROUTE_TYPES: Tuple[int, ...] = (3,)
SECONDS_PER_DAY = 24 * 3600


def identify_weekday_services(
    calendar: Optional[pd.DataFrame],
    calendar_dates: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """Return ``service_id``/``agency`` pairs that operate Monday through Friday.

    A calendar.txt service qualifies when all five weekday flags are 1. A
    service that appears only in calendar_dates.txt qualifies when its added
    dates (exception_type 1) cover every weekday at least once.
    """
    frames = []
    if calendar is not None and not calendar.empty:
        require_columns(calendar, ["service_id", *WEEKDAY_COLUMNS], "calendar")
        cal = with_agency(calendar)
        flags = cal[WEEKDAY_COLUMNS].apply(pd.to_numeric, errors="coerce").fillna(0)
        frames.append(cal.loc[(flags == 1).all(axis=1), ["service_id", "agency"]])
        known = set(cal["service_id"])
    else:
        known = set()

    if calendar_dates is not None and not calendar_dates.empty:
        require_columns(calendar_dates, ["service_id", "date", "exception_type"], "calendar_dates")
        cd = with_agency(calendar_dates)
        cd = cd[~cd["service_id"].isin(known)]
        cd = cd[pd.to_numeric(cd["exception_type"], errors="coerce") == 1].copy()
        cd["weekday"] = pd.to_datetime(cd["date"], format="%Y%m%d", errors="coerce").dt.dayofweek
        cd = cd[cd["weekday"] < 5]
        coverage = cd.groupby(["service_id", "agency"])["weekday"].nunique()
        dated = coverage[coverage == 5].reset_index()[["service_id", "agency"]]
        if not dated.empty:
            LOGGER.info("Found %d weekday services defined only by calendar_dates.", len(dated))
        frames.append(dated)

    if not frames:
        LOGGER.warning("No calendar or calendar_dates table; no weekday services identified.")
        return pd.DataFrame(columns=["service_id", "agency"])

    services = pd.concat(frames, ignore_index=True).drop_duplicates().reset_index(drop=True)
    LOGGER.info("Identified %d weekday services.", len(services))
    return services


def identify_bus_routes(routes: pd.DataFrame, route_types: Iterable[int] = BUS_ROUTE_TYPES) -> pd.DataFrame:
    """Return the ``route_id``/``agency`` rows whose route_type is a bus type."""
    require_columns(routes, ["route_id", "route_type"], "routes")
    rt = with_agency(routes)
    types = pd.to_numeric(rt["route_type"], errors="coerce")
    return rt.loc[types.isin(list(route_types)), ["route_id", "agency"]].reset_index(drop=True)


def get_weekday_bus_trips(
    trips: pd.DataFrame,
    weekday_services: pd.DataFrame,
    bus_routes: pd.DataFrame,
) -> pd.DataFrame:
    """Trips on a weekday service and a bus route, with a ``direction_key`` column."""
    require_columns(trips, ["trip_id", "route_id", "service_id"], "trips")
    tr = add_direction_key(with_agency(trips))
    tr = tr.merge(weekday_services[["service_id", "agency"]], on=["service_id", "agency"], how="inner")
    tr = tr.merge(bus_routes[["route_id", "agency"]], on=["route_id", "agency"], how="inner")
    tr = tr.drop_duplicates(subset=["trip_id"]).reset_index(drop=True)
    LOGGER.info("Found %d weekday bus trips.", len(tr))
    return tr


def stop_time_seconds(stop_times: pd.DataFrame) -> pd.Series:
    """Seconds after midnight for each stop_time, preferring arrival_time."""
    if "arrival_time" in stop_times.columns:
        seconds = parse_gtfs_time_series(stop_times["arrival_time"])
    else:
        seconds = pd.Series(float("nan"), index=stop_times.index)
    if "departure_time" in stop_times.columns:
        seconds = seconds.fillna(parse_gtfs_time_series(stop_times["departure_time"]))
    return seconds


def filter_peak_stop_times(stop_times: pd.DataFrame, window: PeakWindow) -> pd.DataFrame:
    """Rows of *stop_times* whose time lies in *window* (inclusive).

    Times at or past 24:00:00 belong to the next service day and are never
    wrapped into a same-day window. Adds a numeric ``time_sec`` column.
    """
    start = parse_gtfs_time(window.start)
    end = parse_gtfs_time(window.end)
    if start is None or end is None:
        raise ValueError(f"Peak window '{window.name}' has an unparseable start or end.")

    out = stop_times.copy()
    out["time_sec"] = stop_time_seconds(out)
    same_day = out["time_sec"] < SECONDS_PER_DAY
    in_window = (out["time_sec"] >= start) & (out["time_sec"] <= end)
    return out[same_day & in_window].reset_index(drop=True)


def prepare_peak_stop_times(
    stop_times: pd.DataFrame,
    trips: pd.DataFrame,
    config: QualificationConfig,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """AM and PM stop_times for *trips*, with route, agency and direction attached.

    Args:
        stop_times: stop_times table (trip_id, stop_id, arrival/departure).
        trips: Output of :func:`get_weekday_bus_trips` (or any trips table
            carrying ``direction_key``).
        config: Supplies the two peak windows.

    Returns:
        ``(am_stop_times, pm_stop_times)``.
    """
    require_columns(stop_times, ["trip_id", "stop_id"], "stop_times")
    if "direction_key" not in trips.columns:
        trips = add_direction_key(trips)
    keep = ["trip_id", "route_id", "agency", "direction_key"]
    if "shape_id" in trips.columns:
        keep.append("shape_id")
    linked = stop_times.drop(columns=["agency"], errors="ignore").merge(
        with_agency(trips)[keep], on="trip_id", how="inner"
    )
    am = filter_peak_stop_times(linked, config.am_peak)
    pm = filter_peak_stop_times(linked, config.pm_peak)
    LOGGER.info("Peak stop_times: %d AM, %d PM.", len(am), len(pm))
    return am, pm
