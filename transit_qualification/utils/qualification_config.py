"""Immutable run configuration for hub and corridor qualification.

The constants in the Configuration section are the statutory defaults. Every
tool in the package receives a :class:`QualificationConfig` explicitly rather
than reading these module globals, so alternate runs (a different radius, a
different threshold) can coexist in one process.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Optional, Tuple

if TYPE_CHECKING:
    from transit_qualification.hub_tools.agency_profiles import AgencyProfile

# =============================================================================
# CONFIGURATION
# =============================================================================

# Stops whose radius buffers touch are chained into one cluster.
CLUSTER_RADIUS_FT = 150.0

# Peak windows, inclusive at both ends. Durations are in minutes.
AM_PEAK_START = "07:00:00"
AM_PEAK_END = "09:00:00"
AM_PEAK_MINUTES = 120.0
PM_PEAK_START = "16:00:00"
PM_PEAK_END = "18:00:00"
PM_PEAK_MINUTES = 120.0

# Qualification rule.
FREQUENCY_THRESHOLD_MIN = 15.0
HUB_MIN_ROUTES = 2

# Corridor segmentation tuning (all distances in feet).
MIN_SEGMENT_LENGTH_FT = 30.0
COVERAGE_TOLERANCE = 0.9
SIMPLIFY_TOLERANCE_FT = 0.0  # 0 disables simplification
SNAP_TOLERANCE_FT = 5.0
COVERAGE_BUFFER_FT = 1.0

# CRS settings. A projected CRS of None estimates a local UTM zone per run.
GTFS_CRS = "EPSG:4326"
PROJECTED_CRS: Optional[str] = "EPSG:3435"  # NAD83 / Illinois East (ftUS)
OUTPUT_CRS = "EPSG:4326"

# Worker threads for per-group corridor segmentation. 1 runs serially.
MAX_WORKERS = 1

# =============================================================================
# TYPES
# =============================================================================


@dataclass(frozen=True, slots=True)
class PeakWindow:
    """One peak sampling window.

    Attributes:
        name: Short label used as the column suffix, e.g. ``"am"``.
        start: Window start as ``HH:MM:SS``.
        end: Window end as ``HH:MM:SS`` (inclusive).
        duration_minutes: Minutes divided by the trip count to get an interval.
    """

    name: str
    start: str
    end: str
    duration_minutes: float


@dataclass(frozen=True, slots=True)
class SegmentationParams:
    """Corridor segmentation tolerances, in feet unless noted."""

    min_segment_length_ft: float = MIN_SEGMENT_LENGTH_FT
    coverage_tolerance: float = COVERAGE_TOLERANCE  # ratio, 0-1
    simplify_tolerance_ft: float = SIMPLIFY_TOLERANCE_FT
    snap_tolerance_ft: float = SNAP_TOLERANCE_FT
    coverage_buffer_ft: float = COVERAGE_BUFFER_FT


AM_PEAK = PeakWindow("am", AM_PEAK_START, AM_PEAK_END, AM_PEAK_MINUTES)
PM_PEAK = PeakWindow("pm", PM_PEAK_START, PM_PEAK_END, PM_PEAK_MINUTES)


@dataclass(frozen=True)
class QualificationConfig:
    """Everything a qualification run needs besides the GTFS tables."""

    cluster_radius_ft: float = CLUSTER_RADIUS_FT
    am_peak: PeakWindow = AM_PEAK
    pm_peak: PeakWindow = PM_PEAK
    frequency_threshold_min: float = FREQUENCY_THRESHOLD_MIN
    hub_min_routes: int = HUB_MIN_ROUTES
    segmentation: SegmentationParams = field(default_factory=SegmentationParams)
    gtfs_crs: str = GTFS_CRS
    projected_crs: Optional[str] = PROJECTED_CRS
    output_crs: str = OUTPUT_CRS
    max_workers: int = MAX_WORKERS
    agency_profiles: Tuple["AgencyProfile", ...] = ()

    def __post_init__(self) -> None:
        if self.cluster_radius_ft <= 0:
            raise ValueError("cluster_radius_ft must be positive.")
        if self.frequency_threshold_min <= 0:
            raise ValueError("frequency_threshold_min must be positive.")
        if self.hub_min_routes < 1:
            raise ValueError("hub_min_routes must be at least 1.")
        if not 0 < self.segmentation.coverage_tolerance <= 1:
            raise ValueError("coverage_tolerance must be in (0, 1].")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1.")
        for window in (self.am_peak, self.pm_peak):
            if window.duration_minutes <= 0:
                raise ValueError(f"Peak window '{window.name}' needs a positive duration.")

    @property
    def peak_windows(self) -> Tuple[PeakWindow, PeakWindow]:
        """The (AM, PM) windows in evaluation order."""
        return (self.am_peak, self.pm_peak)

    def profile_for(self, agency: str) -> Optional["AgencyProfile"]:
        """Return the profile registered for *agency*, if any."""
        for profile in self.agency_profiles:
            if profile.agency_id == agency:
                return profile
        return None

    def with_overrides(self, **changes) -> "QualificationConfig":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)
