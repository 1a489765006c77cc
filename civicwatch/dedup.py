"""Duplicate-report detection for Civicwatch.

A new report draft is scored against each nearby existing report:

1. Category must match (otherwise confidence 0)
2. Distance must be within ``max_distance_km``
3. The existing report must be younger than ``max_age_hours``
4. Confidence blends a same-category base, proximity and keyword overlap:
   ``0.2 + 0.4 * proximity + 0.4 * keyword_similarity``

Whether a scored candidate counts as a duplicate is decided by a
:class:`DuplicatePolicy`, so the threshold rule can be swapped without
touching the scoring arithmetic.
"""
import logging
import math
from datetime import datetime
from typing import Iterable, List, Optional

from civicwatch.geo import distance_km
from civicwatch.keywords import extract_keywords, keyword_similarity
from civicwatch.models import DuplicateCandidate, DuplicateConfig, Report
from civicwatch.utils import hours_since

logger = logging.getLogger(__name__)

CATEGORY_WEIGHT = 0.2
DISTANCE_WEIGHT = 0.4
KEYWORD_WEIGHT = 0.4


class DuplicatePolicy:
    """Decides whether a scored candidate is flagged as a duplicate."""
    name = "base"

    def is_duplicate(self, confidence: float, similarity: float, config: DuplicateConfig) -> bool:
        raise NotImplementedError


class EitherThresholdPolicy(DuplicatePolicy):
    """Flag when confidence OR keyword similarity clears its threshold.

    A strong textual match alone is enough, even for a geographically
    borderline candidate.
    """
    name = "either"

    def is_duplicate(self, confidence, similarity, config):
        return confidence >= config.min_confidence or similarity >= config.min_keyword_similarity


class ConfidencePolicy(DuplicatePolicy):
    """Flag on overall confidence only."""
    name = "confidence"

    def is_duplicate(self, confidence, similarity, config):
        return confidence >= config.min_confidence


class BothThresholdsPolicy(DuplicatePolicy):
    """Flag only when confidence AND keyword similarity clear their thresholds."""
    name = "both"

    def is_duplicate(self, confidence, similarity, config):
        return confidence >= config.min_confidence and similarity >= config.min_keyword_similarity


POLICIES = {cls.name: cls for cls in (EitherThresholdPolicy, ConfidencePolicy, BothThresholdsPolicy)}


def get_policy(name: str) -> DuplicatePolicy:
    """Return a policy instance by name ('either', 'confidence', 'both')."""
    try:
        return POLICIES[name.strip().lower()]()
    except KeyError:
        raise ValueError(f"Unknown duplicate policy '{name}'. Choose from: {', '.join(sorted(POLICIES))}")


def match(
    new_report: Report,
    existing: Report,
    config: Optional[DuplicateConfig] = None,
    *,
    now: Optional[datetime] = None,
    policy: Optional[DuplicatePolicy] = None,
) -> DuplicateCandidate:
    """Score ``existing`` as a possible duplicate of ``new_report``. Never raises."""
    config = config or DuplicateConfig()
    policy = policy or get_policy(config.policy)

    dist = distance_km(new_report.lat, new_report.lng, existing.lat, existing.lng)
    distance_meters = dist * 1000.0 if math.isfinite(dist) else 0.0
    rejected = DuplicateCandidate(report=existing, distance_meters=distance_meters)

    if new_report.category != existing.category:
        return rejected
    if not math.isfinite(dist) or dist > config.max_distance_km:
        return rejected
    if existing.created_at is None or hours_since(existing.created_at, now) > config.max_age_hours:
        return rejected

    new_keywords = extract_keywords(new_report.text, unique=config.unique_keywords)
    existing_keywords = extract_keywords(existing.text, unique=config.unique_keywords)
    similarity = keyword_similarity(new_keywords, existing_keywords)

    reasons = ["Same category"]
    confidence = CATEGORY_WEIGHT

    proximity = max(0.0, 1.0 - dist / config.max_distance_km) if config.max_distance_km > 0 else 0.0
    confidence += DISTANCE_WEIGHT * proximity
    if proximity > 0:
        reasons.append(f"{round(distance_meters)}m away")

    confidence += KEYWORD_WEIGHT * similarity
    if similarity > 0:
        reasons.append(f"{round(similarity * 100)}% keyword similarity")

    confidence = min(1.0, max(0.0, confidence))
    return DuplicateCandidate(
        report=existing,
        distance_meters=distance_meters,
        keyword_similarity=similarity,
        confidence=confidence,
        reasons=reasons,
        is_duplicate=policy.is_duplicate(confidence, similarity, config),
    )


def rank(candidates: Iterable[DuplicateCandidate]) -> List[DuplicateCandidate]:
    """Keep flagged duplicates, highest confidence first (stable on ties)."""
    flagged = [c for c in candidates if c.is_duplicate]
    flagged.sort(key=lambda c: c.confidence, reverse=True)
    return flagged


def find_duplicates(
    draft: Report,
    nearby: Iterable[Report],
    config: Optional[DuplicateConfig] = None,
    *,
    now: Optional[datetime] = None,
    policy: Optional[DuplicatePolicy] = None,
) -> List[DuplicateCandidate]:
    """Score every nearby report against ``draft`` and return ranked duplicates."""
    config = config or DuplicateConfig()
    policy = policy or get_policy(config.policy)
    if not draft.has_valid_coordinates:
        logger.debug("[Dedup] Draft has no usable coordinates, skipping duplicate check")
        return []

    scored: List[DuplicateCandidate] = []
    skipped = 0
    for report in nearby:
        if not report.has_valid_coordinates:
            skipped += 1
            continue
        if draft.id and report.id == draft.id:
            continue
        scored.append(match(draft, report, config, now=now, policy=policy))

    ranked = rank(scored)
    logger.debug(f"[Dedup] Scored {len(scored)} reports ({skipped} invalid), {len(ranked)} flagged")
    return ranked


def duplicate_message(candidates: List[DuplicateCandidate]) -> Optional[str]:
    """Prompt text describing the top candidate, or None when there are none."""
    if not candidates:
        return None
    top = candidates[0]
    existing = top.report
    lines = [
        "We found a similar report nearby:",
        "",
        f'"{existing.title}"',
        f"📍 {round(top.distance_meters)}m away",
    ]
    if existing.created_at:
        lines.append(f"📅 {existing.created_at.strftime('%Y-%m-%d')}")
    similarity = round(top.keyword_similarity * 100)
    if similarity > 0:
        lines.append(f"🔍 {similarity}% similar content")
    if existing.upvote_count > 0:
        lines.append(f"👍 {existing.upvote_count} upvotes")
    lines.append("")
    lines.append("Would you like to upvote the existing report instead, or continue with your new report?")
    return "\n".join(lines)
