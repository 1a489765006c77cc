"""Viewport-based marker selection.

Filters the in-memory report set to the visible map rectangle (plus a
buffer in degrees) and caps the result with a zoom-dependent density
ceiling. Truncation happens after a deterministic ordering so the markers
that survive are the most relevant ones, not whichever arrived first.
"""
import logging
import math
from typing import Iterable, List, Sequence

from civicwatch.geo import distance_km
from civicwatch.models import Report, Viewport

logger = logging.getLogger(__name__)

DEFAULT_BUFFER = 0.1
LOW_SPEC_MARKER_CAP = 15

# (minimum area in square degrees, marker ceiling), checked top-down
DENSITY_TABLE = (
    (1.0, 5),
    (0.1, 10),
    (0.01, 20),
)
MAX_MARKERS = 30

ORDERINGS = ("nearest", "upvotes", "recent", "input")


def contains(lat: float, lng: float, viewport: Viewport, buffer: float = DEFAULT_BUFFER) -> bool:
    """True if the point lies inside the viewport rectangle grown by ``buffer`` degrees."""
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return (abs(lat - viewport.center_lat) <= viewport.lat_delta / 2 + buffer
            and abs(lng - viewport.center_lng) <= viewport.lng_delta / 2 + buffer)


def density_ceiling(viewport: Viewport, low_spec: bool = False) -> int:
    """Maximum number of markers to render for the viewport's area."""
    area = viewport.area
    ceiling = MAX_MARKERS
    for min_area, limit in DENSITY_TABLE:
        if area > min_area:
            ceiling = limit
            break
    if low_spec:
        ceiling = min(ceiling, LOW_SPEC_MARKER_CAP)
    return ceiling


def order_markers(reports: Sequence[Report], viewport: Viewport, order: str = "nearest") -> List[Report]:
    """Return reports in a stable, deterministic pre-truncation order.

    - nearest: ascending distance from the viewport centre
    - upvotes: most upvoted first
    - recent:  newest first, undated reports last
    - input:   arrival order
    """
    if order == "input":
        return list(reports)
    if order == "nearest":
        return sorted(reports, key=lambda r: distance_km(viewport.center_lat, viewport.center_lng, r.lat, r.lng))
    if order == "upvotes":
        return sorted(reports, key=lambda r: r.upvote_count, reverse=True)
    if order == "recent":
        dated = sorted((r for r in reports if r.created_at), key=lambda r: r.created_at, reverse=True)
        return dated + [r for r in reports if not r.created_at]
    raise ValueError(f"Unknown marker order '{order}'. Choose from: {', '.join(ORDERINGS)}")


def limit_markers(
    reports: Sequence[Report],
    viewport: Viewport,
    *,
    low_spec: bool = False,
    order: str = "nearest",
) -> List[Report]:
    """Order reports and truncate them to the viewport's density ceiling."""
    ceiling = density_ceiling(viewport, low_spec=low_spec)
    return order_markers(reports, viewport, order)[:ceiling]


def select_visible_markers(
    reports: Iterable[Report],
    viewport: Viewport,
    *,
    buffer: float = DEFAULT_BUFFER,
    low_spec: bool = False,
    order: str = "nearest",
) -> List[Report]:
    """Reports to draw for ``viewport``: valid, contained, ordered and capped."""
    if order not in ORDERINGS:
        raise ValueError(f"Unknown marker order '{order}'. Choose from: {', '.join(ORDERINGS)}")
    visible: List[Report] = []
    invalid = 0
    for report in reports:
        if not report.has_valid_coordinates:
            invalid += 1
            continue
        if contains(report.lat, report.lng, viewport, buffer):
            visible.append(report)
    if invalid:
        logger.debug(f"[Viewport] Skipped {invalid} reports with invalid coordinates")
    markers = limit_markers(visible, viewport, low_spec=low_spec, order=order)
    logger.debug(f"[Viewport] {len(visible)} in bounds, showing {len(markers)} (area={viewport.area:.4f})")
    return markers
