"""Shared GTFS loading and normalization helpers.

These helpers assume the feed has already been fetched and, for multi-agency
runs, id-prefixed so that ``stop_id``/``route_id``/``trip_id`` are unique
across agencies. Nothing here mutates its inputs.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Iterable, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

LOGGER = logging.getLogger(__name__)

# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_GTFS_FILES: tuple[str, ...] = (
    "stops.txt",
    "routes.txt",
    "trips.txt",
    "stop_times.txt",
    "calendar.txt",
    "calendar_dates.txt",
    "shapes.txt",
)

# Files a qualification run cannot do without.
REQUIRED_GTFS_FILES: tuple[str, ...] = ("stops.txt", "routes.txt", "trips.txt", "stop_times.txt")

DIRECTION_COMBINED = "combined"
DIRECTION_KEYS: tuple[str, ...] = ("0", "1", DIRECTION_COMBINED)
DEFAULT_AGENCY = "default"

# =============================================================================
# LOADING
# =============================================================================


def load_gtfs_data(
    gtfs_folder_path: str,
    files: Optional[Sequence[str]] = None,
    dtype: str | type[str] | Mapping[str, Any] = str,
) -> dict[str, pd.DataFrame]:
    """Load one or more GTFS text files into memory.

    Args:
        gtfs_folder_path: Path to the folder holding the GTFS ``.txt`` files.
        files: File names to load. If ``None``, the required files are loaded
            along with any optional files from :data:`DEFAULT_GTFS_FILES`
            that are present.
        dtype: Forwarded to :func:`pandas.read_csv`; defaults to ``str`` so
            identifiers keep leading zeros.

    Returns:
        Mapping of file stem to DataFrame, e.g. ``data["trips"]``.

    Raises:
        OSError: Folder missing or one of *files* not present.
        ValueError: Empty file or CSV parser failure.
        RuntimeError: Generic OS error while reading a file.
    """
    if not os.path.exists(gtfs_folder_path):
        raise OSError(f"The directory '{gtfs_folder_path}' does not exist.")

    if files is None:
        optional = [
            name
            for name in DEFAULT_GTFS_FILES
            if name not in REQUIRED_GTFS_FILES
            and os.path.exists(os.path.join(gtfs_folder_path, name))
        ]
        files = list(REQUIRED_GTFS_FILES) + optional

    missing = [
        file_name
        for file_name in files
        if not os.path.exists(os.path.join(gtfs_folder_path, file_name))
    ]
    if missing:
        raise OSError(f"Missing GTFS files in '{gtfs_folder_path}': {', '.join(missing)}")

    data: dict[str, pd.DataFrame] = {}
    for file_name in files:
        key = file_name.replace(".txt", "")
        file_path = os.path.join(gtfs_folder_path, file_name)
        try:
            df = pd.read_csv(file_path, dtype=dtype, low_memory=False)
        except pd.errors.EmptyDataError as exc:
            raise ValueError(f"File '{file_name}' in '{gtfs_folder_path}' is empty.") from exc
        except pd.errors.ParserError as exc:
            raise ValueError(f"Parser error in '{file_name}' in '{gtfs_folder_path}': {exc}") from exc
        except OSError as exc:
            raise RuntimeError(f"OS error reading file '{file_name}' in '{gtfs_folder_path}': {exc}") from exc
        data[key] = df
        LOGGER.info("Loaded %s (%d records).", file_name, len(df))

    return data


# =============================================================================
# VALIDATION / NORMALIZATION
# =============================================================================


def require_columns(df: pd.DataFrame, required: Iterable[str], table: str) -> None:
    """Raise if *df* lacks any of *required*."""
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValueError(f"{table} is missing required columns: {missing}")


def with_agency(df: pd.DataFrame, default: str = DEFAULT_AGENCY) -> pd.DataFrame:
    """Return a copy of *df* with a populated string ``agency`` column.

    Single-feed runs rarely carry an agency column on every table; missing or
    blank values fall back to *default*.
    """
    out = df.copy()
    if "agency" not in out.columns:
        out["agency"] = default
    else:
        agency = out["agency"].fillna("").astype(str).str.strip()
        out["agency"] = agency.where(agency != "", default)
    return out


def direction_key_series(values: pd.Series) -> pd.Series:
    """Map raw ``direction_id`` values onto ``"0"``, ``"1"`` or ``"combined"``.

    Anything that is not a clean 0/1 (blank, NaN, ``"2"``) lands in the
    explicit combined bucket instead of being guessed into a direction.
    """
    as_num = pd.to_numeric(values, errors="coerce")
    keys = pd.Series(DIRECTION_COMBINED, index=values.index, dtype=object)
    keys[as_num == 0] = "0"
    keys[as_num == 1] = "1"
    return keys


def add_direction_key(trips: pd.DataFrame) -> pd.DataFrame:
    """Return a copy of *trips* with a ``direction_key`` column."""
    out = trips.copy()
    if "direction_id" in out.columns:
        out["direction_key"] = direction_key_series(out["direction_id"])
    else:
        out["direction_key"] = DIRECTION_COMBINED
    return out


def has_direction_data(trips: pd.DataFrame) -> bool:
    """True when at least one trip carries a usable 0/1 direction."""
    if "direction_id" not in trips.columns:
        return False
    return bool((direction_key_series(trips["direction_id"]) != DIRECTION_COMBINED).any())


# =============================================================================
# TIME HANDLING
# =============================================================================


def parse_gtfs_time(value: Any) -> Optional[int]:
    """Parse ``HH:MM[:SS]`` into seconds after midnight.

    Hours of 24 or more are allowed (next-day service). Returns ``None`` for
    blank or malformed input.
    """
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    text = str(value).strip()
    if not text:
        return None
    parts = text.split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        hours = int(parts[0])
        minutes = int(parts[1])
        seconds = int(parts[2]) if len(parts) == 3 else 0
    except ValueError:
        return None
    if hours < 0 or not 0 <= minutes < 60 or not 0 <= seconds < 60:
        return None
    return hours * 3600 + minutes * 60 + seconds


def parse_gtfs_time_series(values: pd.Series) -> pd.Series:
    """Vectorized :func:`parse_gtfs_time`; invalid entries become ``NaN``."""
    parsed = values.map(parse_gtfs_time)
    return pd.to_numeric(parsed, errors="coerce")


def format_seconds_12h(seconds: Optional[float]) -> Optional[str]:
    """Format seconds after midnight as ``"HH:MM AM"``; ``None`` passes through."""
    if seconds is None or pd.isna(seconds):
        return None
    total = int(seconds)
    hours = (total // 3600) % 24
    minutes = (total % 3600) // 60
    period = "AM" if hours < 12 else "PM"
    display = 12 if hours == 0 else (hours - 12 if hours > 12 else hours)
    return f"{display:02d}:{minutes:02d} {period}"
