"""Street-name check that clustered routes actually meet.

A cluster can contain stops on two parallel streets that are merely close to
each other. Routes are only considered to meet when at least two of them
serve a stop whose name mentions the same street.

Matching is purely lexical: "State" and "State St" are different streets, and
abbreviations or synonyms are not normalized.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Set

import pandas as pd

from transit_qualification.utils.gtfs_helpers import require_columns

LOGGER = logging.getLogger(__name__)

# Separators are case-sensitive: " AT " inside a name is not a split point.
STREET_SEPARATORS = re.compile(r" & | at | @ |/")
DESCRIPTIVE_SUFFIX = re.compile(r"\s+(Station|Terminal|Platform|Stop|Entrance)$", flags=re.IGNORECASE)


def parse_street_names(stop_name: Optional[str]) -> List[str]:
    """Split a stop name into street tokens.

    >>> parse_street_names("State & Madison")
    ['State', 'Madison']
    >>> parse_street_names("Harlem/Lake Station")
    ['Harlem', 'Lake']
    """
    if stop_name is None or pd.isna(stop_name):
        return []
    tokens = []
    for part in STREET_SEPARATORS.split(str(stop_name)):
        token = DESCRIPTIVE_SUFFIX.sub("", part.strip()).strip()
        if token:
            tokens.append(token)
    return tokens


def verify_route_overlap_at_cluster(cluster_stops: pd.DataFrame, stop_routes: pd.DataFrame) -> Dict[str, object]:
    """Decide whether the routes serving one cluster share a street.

    Args:
        cluster_stops: The cluster's member stops (``stop_id``, ``stop_name``).
        stop_routes: ``stop_id``/``route_id`` pairs for the routes in scope.

    Returns:
        Dict with ``has_overlap``, ``num_routes``, ``shared_streets`` (sorted,
        comma-joined) and ``routes_with_overlap``.
    """
    served = stop_routes[stop_routes["stop_id"].isin(cluster_stops["stop_id"])]
    names = cluster_stops.drop_duplicates("stop_id").set_index("stop_id")["stop_name"]

    streets_by_route: Dict[str, Set[str]] = {}
    for stop_id, route_id in served[["stop_id", "route_id"]].drop_duplicates().itertuples(index=False):
        streets_by_route.setdefault(route_id, set()).update(parse_street_names(names.get(stop_id)))

    num_routes = len(streets_by_route)
    routes_by_street: Dict[str, Set[str]] = {}
    for route_id, streets in streets_by_route.items():
        for street in streets:
            routes_by_street.setdefault(street, set()).add(route_id)

    shared = sorted(street for street, routes in routes_by_street.items() if len(routes) >= 2)
    overlapping_routes: Set[str] = set()
    for street in shared:
        overlapping_routes |= routes_by_street[street]

    has_overlap = num_routes >= 2 and bool(shared) and len(overlapping_routes) >= 2
    return {
        "has_overlap": has_overlap,
        "num_routes": num_routes,
        "shared_streets": ", ".join(shared),
        "routes_with_overlap": len(overlapping_routes),
    }


def verify_route_overlap(
    clustered_stops: pd.DataFrame,
    stop_routes: pd.DataFrame,
    cluster_ids: Optional[Iterable[int]] = None,
) -> pd.DataFrame:
    """Run :func:`verify_route_overlap_at_cluster` for each requested cluster.

    Args:
        clustered_stops: Output of ``cluster_stops`` (needs ``stop_name``).
        stop_routes: Stop/route pairs, e.g. from peak stop_times.
        cluster_ids: Clusters to check; all clusters when ``None``.

    Returns:
        One row per cluster with ``cluster_id`` and the verification fields.
    """
    require_columns(clustered_stops, ["cluster_id", "stop_id", "stop_name"], "clustered stops")
    require_columns(stop_routes, ["stop_id", "route_id"], "stop routes")

    if cluster_ids is None:
        targets = sorted(clustered_stops["cluster_id"].unique())
    else:
        targets = sorted(set(cluster_ids))

    by_cluster = {cid: grp for cid, grp in clustered_stops.groupby("cluster_id")}
    rows = []
    for cluster_id in targets:
        members = by_cluster.get(cluster_id)
        if members is None:
            continue
        result = verify_route_overlap_at_cluster(members, stop_routes)
        rows.append({"cluster_id": cluster_id, **result})

    out = pd.DataFrame(
        rows, columns=["cluster_id", "has_overlap", "num_routes", "shared_streets", "routes_with_overlap"]
    )
    LOGGER.info("Verified route overlap for %d clusters; %d confirmed.",
                len(out), int(out["has_overlap"].sum()) if not out.empty else 0)
    return out
