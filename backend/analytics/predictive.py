"""
backend.analytics.predictive: Fixed-weight conversion scoring.

A proposal (or a single viewing session) is reduced to an
``EngagementSnapshot``; seven factor scores in [0, 100] are combined with
fixed weights into an engagement score, and a logistic curve over the
engagement and quality scores yields a conversion probability.

Usage::

    snapshot = build_snapshot(interactions, scroll_samples, is_returning=False)
    result = score_engagement(proposal_id, None, snapshot)
"""

from __future__ import annotations

import math
from typing import Any, Dict, Optional, Sequence

from backend.analytics.clicks import meta_text
from backend.core.constants import (
    CASE_STUDY_CONVERSION_P,
    DEEP_SCROLL_DEPTH,
    DEVICE_SCORE_DEFAULT,
    DEVICE_SCORES,
    FACTOR_WEIGHTS,
    HIGH_CONVERSION_P,
    INTERACTIONS_SATURATION,
    LOGIT_DEEP_SCROLL_BONUS,
    LOGIT_ENGAGEMENT_SLOPE,
    LOGIT_INTERCEPT,
    LOGIT_LONG_VISIT_BONUS,
    LOGIT_PRICING_BONUS,
    LOGIT_QUALITY_SLOPE,
    LOGIT_RETURNING_BONUS,
    LONG_VISIT_SECONDS,
    MODERATE_CONVERSION_P,
    PRICING_VIEWED_SCORE,
    RETURNING_VISITOR_SCORE,
    TIME_OF_DAY_SCORE_DEFAULT,
    TIME_OF_DAY_SCORES,
    TIME_SPENT_SATURATION_S,
)
from backend.core.utils import clamp, logistic
from backend.domain.enums import InteractionType, TimeOfDay
from backend.domain.models import EngagementSnapshot, FactorScore, PredictiveScore

PRICING_ELEMENT_TYPE = "pricing-table"
PRICING_SECTION = "pricing"


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

def build_snapshot(
    interactions: Sequence[Any],
    scroll_samples: Sequence[Any],
    is_returning: bool = False,
) -> EngagementSnapshot:
    """Reduce raw rows to the signals the scorer consumes.

    ``interactions`` must be ordered by timestamp; the first row decides the
    device and the time-of-day bucket.
    """
    time_spent = sum(s.time_spent or 0 for s in scroll_samples) / 1000.0
    max_depth = max((s.scroll_depth or 0.0 for s in scroll_samples), default=0.0)

    pricing_viewed = any(
        row.element_type == PRICING_ELEMENT_TYPE
        or meta_text(row, "section", "") == PRICING_SECTION
        for row in interactions
    )

    if interactions:
        first = interactions[0]
        device = meta_text(first, "deviceType", "desktop")
        time_of_day = TimeOfDay.from_hour(first.timestamp.hour).value
    else:
        device = "desktop"
        time_of_day = TimeOfDay.BUSINESS.value

    return EngagementSnapshot(
        time_spent=time_spent,
        max_scroll_depth=max_depth,
        interactions=len(interactions),
        pricing_viewed=pricing_viewed,
        is_returning=is_returning,
        device_type=device,
        time_of_day=time_of_day,
        click_count=sum(1 for r in interactions if r.type == InteractionType.CLICK.value),
        hover_count=sum(1 for r in interactions if r.type == InteractionType.HOVER.value),
    )


# ---------------------------------------------------------------------------
# Factor scores
# ---------------------------------------------------------------------------

def time_spent_score(seconds: float) -> float:
    """Logarithmic ramp reaching 100 at ten minutes."""
    if seconds <= 0:
        return 0.0
    if seconds >= TIME_SPENT_SATURATION_S:
        return 100.0
    return min(100.0, math.log(seconds + 1) / math.log(TIME_SPENT_SATURATION_S + 1) * 100.0)


def scroll_depth_score(depth: float) -> float:
    return min(100.0, depth)


def interaction_score(count: int) -> float:
    if count <= 0:
        return 0.0
    if count >= INTERACTIONS_SATURATION:
        return 100.0
    return count / INTERACTIONS_SATURATION * 100.0


def device_score(device_type: str) -> float:
    return DEVICE_SCORES.get(device_type, DEVICE_SCORE_DEFAULT)


def time_of_day_score(time_of_day: str) -> float:
    return TIME_OF_DAY_SCORES.get(time_of_day, TIME_OF_DAY_SCORE_DEFAULT)


def factor_scores(snap: EngagementSnapshot) -> Dict[str, FactorScore]:
    raw = {
        "time_spent":        (snap.time_spent, time_spent_score(snap.time_spent)),
        "scroll_depth":      (snap.max_scroll_depth, scroll_depth_score(snap.max_scroll_depth)),
        "interactions":      (snap.interactions, interaction_score(snap.interactions)),
        "returning_visitor": (snap.is_returning, RETURNING_VISITOR_SCORE if snap.is_returning else 0.0),
        "device_type":       (snap.device_type, device_score(snap.device_type)),
        "time_of_day":       (snap.time_of_day, time_of_day_score(snap.time_of_day)),
        "pricing_viewed":    (snap.pricing_viewed, PRICING_VIEWED_SCORE if snap.pricing_viewed else 0.0),
    }
    return {
        name: FactorScore(value=value, weight=FACTOR_WEIGHTS[name], score=score)
        for name, (value, score) in raw.items()
    }


def quality_score(snap: EngagementSnapshot) -> float:
    """How complete the viewing was, 0-100."""
    score = 0.0
    if snap.max_scroll_depth >= 50:
        score += 30
    if snap.pricing_viewed:
        score += 30
    if snap.interactions >= 5:
        score += 20
    if snap.time_spent >= 60:
        score += 20
    return min(100.0, score)


def conversion_probability(engagement: float, quality: float, snap: EngagementSnapshot) -> float:
    z = LOGIT_INTERCEPT
    z += engagement * LOGIT_ENGAGEMENT_SLOPE
    z += quality * LOGIT_QUALITY_SLOPE
    if snap.pricing_viewed:
        z += LOGIT_PRICING_BONUS
    if snap.is_returning:
        z += LOGIT_RETURNING_BONUS
    if snap.max_scroll_depth >= DEEP_SCROLL_DEPTH:
        z += LOGIT_DEEP_SCROLL_BONUS
    if snap.time_spent >= LONG_VISIT_SECONDS:
        z += LOGIT_LONG_VISIT_BONUS
    return clamp(logistic(z), 0.0, 1.0)


# ---------------------------------------------------------------------------
# Advice
# ---------------------------------------------------------------------------

def recommendation(probability: float, snap: EngagementSnapshot) -> str:
    if probability >= HIGH_CONVERSION_P:
        return "High conversion likelihood. Consider sending a personalized follow-up or scheduling a call."
    if probability >= MODERATE_CONVERSION_P:
        return "Moderate interest shown. Send additional resources or address potential concerns."
    if snap.max_scroll_depth < 50:
        return "Low engagement. Consider A/B testing the opening section or simplifying the proposal."
    if not snap.pricing_viewed:
        return "Pricing section not viewed. Consider highlighting pricing earlier or making it more prominent."
    return "Limited engagement. Consider reaching out to address questions or concerns."


def next_best_action(probability: float, snap: EngagementSnapshot) -> str:
    if probability >= HIGH_CONVERSION_P:
        return "Send personalized email with next steps"
    if probability >= CASE_STUDY_CONVERSION_P:
        return "Share case study or testimonial"
    if not snap.pricing_viewed:
        return "Offer pricing consultation call"
    if snap.time_spent < 60:
        return "Send simplified one-pager version"
    return "Schedule discovery call to address concerns"


def score_engagement(
    proposal_id: str,
    session_id: Optional[str],
    snap: EngagementSnapshot,
) -> PredictiveScore:
    factors = factor_scores(snap)
    engagement = sum(f.score * f.weight for f in factors.values())
    quality = quality_score(snap)
    probability = conversion_probability(engagement, quality, snap)

    return PredictiveScore(
        proposal_id=proposal_id,
        session_id=session_id,
        conversion_probability=probability,
        engagement_score=int(math.floor(engagement + 0.5)),
        quality_score=int(math.floor(quality + 0.5)),
        factors=factors,
        recommendation=recommendation(probability, snap),
        next_best_action=next_best_action(probability, snap),
    )
