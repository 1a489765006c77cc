"""Public Python API for Civicwatch — use as a library.

Quick start:

    from civicwatch.api import find_duplicates, select_visible_markers

    draft = {"lat": -26.2041, "lng": 28.0473, "category": "water",
             "title": "Burst pipe on Main Street"}
    for c in find_duplicates(draft, nearby_reports):
        print(f"[{c.confidence:.0%}] {c.report.title} — {', '.join(c.reasons)}")

    viewport = {"latitude": -26.2, "longitude": 28.05,
                "latitudeDelta": 0.01, "longitudeDelta": 0.01}
    markers = select_visible_markers(all_reports, viewport, low_spec=True)

With a Report Store (fails open — store errors yield no candidates):

    from civicwatch.store import HTTPReportStore
    store = HTTPReportStore("https://reports.example.org/api")
    candidates = check_draft(draft, store)
    result = submit_draft(draft, store, choice="upvote")  # or "continue"

Both scoring entry points are pure and synchronous; the caller does the I/O.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Optional, Union

from civicwatch.dedup import find_duplicates as _find_duplicates
from civicwatch.engine import DuplicateCheckEngine, SubmissionResult
from civicwatch.models import DuplicateCandidate, DuplicateConfig, Report, Viewport
from civicwatch.store import ReportStore
from civicwatch.viewport import DEFAULT_BUFFER
from civicwatch.viewport import select_visible_markers as _select_visible_markers

ReportLike = Union[Report, dict]


def _as_report(value: ReportLike) -> Report:
    return value if isinstance(value, Report) else Report.from_dict(value)


def _as_viewport(value: Union[Viewport, dict, str]) -> Viewport:
    if isinstance(value, Viewport):
        return value
    if isinstance(value, str):
        return Viewport.parse(value)
    return Viewport.from_dict(value)


def find_duplicates(
    draft: ReportLike,
    nearby: Iterable[ReportLike],
    config: Optional[DuplicateConfig] = None,
    **overrides,
) -> List[DuplicateCandidate]:
    """Rank ``nearby`` reports that likely describe the same issue as ``draft``.

    Args:
        draft: The new report (a Report or an API-style dict).
        nearby: Reports returned by the store's nearby search.
        config: Thresholds; defaults to DuplicateConfig().
        **overrides: Individual DuplicateConfig fields, e.g. max_age_hours=72.

    Returns:
        Flagged candidates, highest confidence first.
    """
    config = config or DuplicateConfig()
    if overrides:
        config = replace(config, **overrides)
    return _find_duplicates(_as_report(draft), [_as_report(r) for r in nearby], config)


def select_visible_markers(
    reports: Iterable[ReportLike],
    viewport: Union[Viewport, dict, str],
    *,
    buffer: float = DEFAULT_BUFFER,
    low_spec: bool = False,
    order: str = "nearest",
) -> List[Report]:
    """Reports to render for ``viewport``, bounded by its density ceiling."""
    return _select_visible_markers(
        [_as_report(r) for r in reports],
        _as_viewport(viewport),
        buffer=buffer,
        low_spec=low_spec,
        order=order,
    )


def check_draft(
    draft: ReportLike,
    store: ReportStore,
    config: Optional[DuplicateConfig] = None,
) -> List[DuplicateCandidate]:
    """Query ``store`` for nearby reports and rank duplicates; [] if the store fails."""
    return DuplicateCheckEngine(store, config).check(_as_report(draft))


def submit_draft(
    draft: ReportLike,
    store: ReportStore,
    choice: str = "continue",
    config: Optional[DuplicateConfig] = None,
) -> SubmissionResult:
    """Check ``draft`` against ``store`` and resolve it in one call.

    ``choice="upvote"`` upvotes the top duplicate instead of filing a new
    report; ``choice="continue"`` files the draft, flagged for review when
    duplicates were found. Store errors from the upvote/create step propagate
    as :class:`~civicwatch.store.ReportStoreError`.
    """
    return DuplicateCheckEngine(store, config).submit_report(_as_report(draft), choice)
