"""Orchestration around the pure scoring and selection functions.

:class:`DuplicateCheckEngine` runs the submission path (store lookup, scoring,
ranking, then upvote-or-create) and guarantees that a slow, superseded check
never overwrites the result of a newer one. :class:`MarkerSession` runs the
map path for one map screen: viewport changes are debounced and the settled
viewport is turned into a bounded marker list.
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Iterable, List, Mapping, Optional

from civicwatch.coalesce import Debouncer, RequestGenerations, Scheduler
from civicwatch.config import marker_options_from
from civicwatch.dedup import DuplicatePolicy, find_duplicates, get_policy
from civicwatch.geo import radius_for_viewport_km
from civicwatch.models import DuplicateCandidate, DuplicateConfig, Report, Viewport
from civicwatch.store import ReportStore
from civicwatch.viewport import (
    DEFAULT_BUFFER,
    LOW_SPEC_MARKER_CAP,
    ORDERINGS,
    density_ceiling,
    select_visible_markers,
)

logger = logging.getLogger(__name__)

# Sent with a report the user chose to file despite likely duplicates
DUPLICATE_FLAGS = {"flagged_as_potential_duplicate": True, "duplicate_check_performed": True}
RESOLUTIONS = ("upvote", "continue")


@dataclass
class CheckResult:
    token: int
    candidates: List[DuplicateCandidate] = field(default_factory=list)
    stale: bool = False


@dataclass
class SubmissionResult:
    """Outcome of a submission: a new report was created, or an existing one upvoted."""
    action: str  # "created" | "upvoted"
    report: Report
    candidates: List[DuplicateCandidate] = field(default_factory=list)
    flagged: bool = False

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "report": self.report.to_dict(),
            "flagged": self.flagged,
            "candidates": [c.to_dict() for c in self.candidates],
        }


class DuplicateCheckEngine:
    """Fetches nearby reports for a draft and ranks likely duplicates.

    Store failures never block submission: the check fails open and returns
    no candidates.
    """

    def __init__(
        self,
        store: ReportStore,
        config: Optional[DuplicateConfig] = None,
        policy: Optional[DuplicatePolicy] = None,
        max_workers: int = 2,
    ):
        self.store = store
        self.config = config or DuplicateConfig()
        self.policy = policy or get_policy(self.config.policy)
        self.max_workers = max_workers
        self.generations = RequestGenerations()
        self._pool: Optional[ThreadPoolExecutor] = None
        self._deliver_lock = threading.Lock()
        self._closed = False

    def check(self, draft: Report, now: Optional[datetime] = None) -> List[DuplicateCandidate]:
        """Synchronous duplicate check for ``draft``. Returns [] if the store fails in any way."""
        if not draft.has_valid_coordinates:
            logger.info("[Engine] Draft has no coordinates, duplicate check skipped")
            return []
        t0 = time.monotonic()
        try:
            nearby = self.store.search_nearby(
                draft.lat, draft.lng, self.config.max_distance_km, draft.category or None
            )
        except Exception as e:
            logger.warning(f"[Engine] Duplicate check skipped, store unavailable: {e}")
            return []
        candidates = find_duplicates(draft, nearby, self.config, now=now, policy=self.policy)
        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(f"[Engine] {len(nearby)} nearby, {len(candidates)} likely duplicates in {elapsed_ms:.0f}ms")
        return candidates

    def submit(
        self,
        draft: Report,
        on_result: Optional[Callable[[List[DuplicateCandidate]], None]] = None,
    ) -> "Future[CheckResult]":
        """Run :meth:`check` in the background.

        ``on_result`` only sees the response of the most recent submission;
        responses overtaken by a newer submit are marked stale and dropped.
        Deliveries are serialised, so ``on_result`` must not block on another
        check of the same engine.
        """
        if self._closed:
            raise RuntimeError("DuplicateCheckEngine is closed")
        token = self.generations.issue()
        if self._pool is None:
            self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="civicwatch")
        return self._pool.submit(self._run, token, draft, on_result)

    def _run(self, token, draft, on_result) -> CheckResult:
        candidates = self.check(draft)
        # Currency check and delivery are one step: a newer result can't land in between
        with self._deliver_lock:
            if not self.generations.is_current(token):
                logger.debug(f"[Engine] Discarding stale duplicate check #{token} (latest #{self.generations.latest})")
                return CheckResult(token=token, candidates=candidates, stale=True)
            if on_result is not None:
                on_result(candidates)
        return CheckResult(token=token, candidates=candidates)

    def resolve(self, draft: Report, candidates: List[DuplicateCandidate],
                choice: str = "continue") -> SubmissionResult:
        """Act on the user's answer to the duplicate prompt.

        ``upvote`` supports the top candidate instead of filing ``draft``;
        ``continue`` files ``draft``, flagged for review when candidates exist.
        With no candidates the draft is always filed unflagged. Store errors
        propagate: a failed submission must be visible to the caller.
        """
        if choice not in RESOLUTIONS:
            raise ValueError(f"Unknown duplicate resolution '{choice}'. Choose from: {', '.join(RESOLUTIONS)}")
        if candidates and choice == "upvote":
            existing = candidates[0].report
            self.store.upvote(existing.id)
            logger.info(f"[Engine] Upvoted existing report {existing.id} instead of filing a duplicate")
            upvoted = replace(existing, upvote_count=existing.upvote_count + 1)
            return SubmissionResult(action="upvoted", report=upvoted, candidates=candidates)

        flagged = bool(candidates)
        report = draft
        if flagged:
            report = replace(draft, metadata={**(draft.metadata or {}), **DUPLICATE_FLAGS})
        created = self.store.create(report)
        logger.info(f"[Engine] Created report {created.id}{' (flagged as potential duplicate)' if flagged else ''}")
        return SubmissionResult(action="created", report=created, candidates=candidates, flagged=flagged)

    def submit_report(self, draft: Report, choice: str = "continue",
                      now: Optional[datetime] = None) -> SubmissionResult:
        """Check ``draft`` for duplicates, then upvote or create per ``choice``."""
        if choice not in RESOLUTIONS:
            raise ValueError(f"Unknown duplicate resolution '{choice}'. Choose from: {', '.join(RESOLUTIONS)}")
        return self.resolve(draft, self.check(draft, now=now), choice)

    def close(self) -> None:
        """Discard in-flight results and stop the worker pool."""
        self._closed = True
        self.generations.invalidate()
        if self._pool is not None:
            self._pool.shutdown(wait=False)
            self._pool = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class MarkerSession:
    """Debounced marker selection for a single map screen."""

    def __init__(
        self,
        on_markers: Callable[[List[Report], Viewport], None],
        reports: Iterable[Report] = (),
        *,
        debounce_s: float = 1.0,
        buffer: float = DEFAULT_BUFFER,
        low_spec: bool = False,
        order: str = "nearest",
        scheduler: Optional[Scheduler] = None,
    ):
        if order not in ORDERINGS:
            raise ValueError(f"Unknown marker order '{order}'. Choose from: {', '.join(ORDERINGS)}")
        self._on_markers = on_markers
        self._reports: List[Report] = list(reports)
        self.buffer = buffer
        self.low_spec = low_spec
        self.order = order
        self.last_viewport: Optional[Viewport] = None
        self.evaluations = 0
        self._debouncer = Debouncer(self._evaluate, debounce_s, scheduler=scheduler)

    @classmethod
    def from_config(
        cls,
        on_markers: Callable[[List[Report], Viewport], None],
        values: Mapping[str, Any],
        reports: Iterable[Report] = (),
        scheduler: Optional[Scheduler] = None,
    ) -> "MarkerSession":
        """Build a session from config/CLI style keys (debounce_ms, buffer, low_spec, order)."""
        return cls(on_markers, reports, scheduler=scheduler, **marker_options_from(values))

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    @property
    def reports(self) -> List[Report]:
        return list(self._reports)

    def set_reports(self, reports: Iterable[Report]) -> None:
        """Replace the report set; markers refresh on the next viewport settle."""
        self._reports = list(reports)

    def load_region(self, store: ReportStore, viewport: Viewport) -> bool:
        """Replace the report set with the store's reports around ``viewport``.

        The search radius covers the viewport's larger span and the fetch is
        capped at the viewport's marker ceiling (never more than 15). A failing
        store leaves the current reports in place and returns False.
        """
        radius_km = radius_for_viewport_km(viewport)
        limit = min(density_ceiling(viewport, low_spec=self.low_spec), LOW_SPEC_MARKER_CAP)
        try:
            reports = store.search_nearby(viewport.center_lat, viewport.center_lng, radius_km, limit=limit)
        except Exception as e:
            logger.warning(f"[Engine] Could not load reports for region: {e}")
            return False
        logger.debug(f"[Engine] Loaded {len(reports)} reports within {radius_km:.1f}km (limit {limit})")
        self.set_reports(reports)
        return True

    def viewport_changed(self, viewport: Viewport) -> None:
        self._debouncer.submit(viewport)

    def flush(self) -> bool:
        """Evaluate a pending viewport now instead of waiting for it to settle."""
        return self._debouncer.flush()

    def refresh(self) -> None:
        """Re-evaluate the last settled viewport immediately (e.g. after set_reports)."""
        if self.last_viewport is not None:
            self._evaluate(self.last_viewport)

    def _evaluate(self, viewport: Viewport) -> None:
        self.last_viewport = viewport
        self.evaluations += 1
        markers = select_visible_markers(
            self._reports, viewport, buffer=self.buffer, low_spec=self.low_spec, order=self.order
        )
        self._on_markers(markers, viewport)

    def dispose(self) -> None:
        self._debouncer.dispose()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.dispose()
        return False
