"""
backend.analytics.scroll: Scroll depth distribution, drop-off and bands.

Samples expose ``session_id``, ``scroll_depth`` (percent),
``scroll_position`` (px) and ``time_spent`` (ms, nullable).
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Sequence

from backend.core.constants import (
    DEPTH_BUCKET_COUNT,
    DEPTH_BUCKET_WIDTH,
    DROP_OFF_MIN_RATE_PCT,
    SCROLL_BAND_PX,
)
from backend.core.utils import clamp, floor_to_grid, mean_safe, pct, upper_median
from backend.domain.models import DepthBucket, DropOffPoint, HeatmapPoint, SectionRange


def clamp_depth(depth: float) -> float:
    return clamp(float(depth), 0.0, 100.0)


def session_max_depths(samples: Iterable[Any]) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for s in samples:
        out[s.session_id] = max(out.get(s.session_id, 0.0), s.scroll_depth or 0.0)
    return out


def session_totals(samples: Iterable[Any]) -> Dict[str, Dict[str, float]]:
    """Per-session ``{"max_depth", "time_ms"}`` aggregates."""
    out: Dict[str, Dict[str, float]] = {}
    for s in samples:
        agg = out.setdefault(s.session_id, {"max_depth": 0.0, "time_ms": 0.0})
        agg["max_depth"] = max(agg["max_depth"], s.scroll_depth or 0.0)
        agg["time_ms"] += s.time_spent or 0
    return out


def bucket_index(depth: float) -> int:
    return min(int(depth // DEPTH_BUCKET_WIDTH), DEPTH_BUCKET_COUNT - 1)


def depth_buckets(depths: Sequence[float], total_views: int) -> List[DepthBucket]:
    buckets = [
        DepthBucket(depth=(i + 1) * DEPTH_BUCKET_WIDTH)
        for i in range(DEPTH_BUCKET_COUNT)
    ]
    for depth in depths:
        buckets[bucket_index(depth)].count += 1
    for bucket in buckets:
        bucket.percentage = pct(bucket.count, total_views)
    return buckets


def drop_off_points(buckets: Sequence[DepthBucket]) -> List[DropOffPoint]:
    """Adjacent-bucket losses above the reporting threshold, worst first."""
    points: List[DropOffPoint] = []
    for current, nxt in zip(buckets, buckets[1:]):
        if current.count <= 0:
            continue
        rate = (current.count - nxt.count) / current.count * 100.0
        if rate > DROP_OFF_MIN_RATE_PCT:
            points.append(DropOffPoint(depth=current.depth, drop_off_rate=rate))
    points.sort(key=lambda p: p.drop_off_rate, reverse=True)
    return points


def retention_curve(depths: Sequence[float]) -> List[Dict[str, float]]:
    """Share of sessions that reached at least the start of each bucket."""
    total = len(depths)
    curve = []
    for i in range(DEPTH_BUCKET_COUNT):
        label = (i + 1) * DEPTH_BUCKET_WIDTH
        reached = sum(1 for d in depths if d >= label - DEPTH_BUCKET_WIDTH)
        curve.append({"depth": label, "percentage": pct(reached, total)})
    return curve


def scroll_depth_analytics(proposal_id: str, samples: Sequence[Any]) -> Dict[str, Any]:
    max_depths = session_max_depths(samples)
    depths = list(max_depths.values())
    total_views = len(max_depths)
    buckets = depth_buckets(depths, total_views)

    return {
        "proposal_id": proposal_id,
        "total_views": total_views,
        "depth_buckets": [vars(b).copy() for b in buckets],
        "avg_scroll_depth": mean_safe(depths),
        "median_scroll_depth": upper_median(depths),
        "drop_off_points": [vars(p).copy() for p in drop_off_points(buckets)],
        "retention_curve": retention_curve(depths),
    }


def scroll_bands(samples: Iterable[Any], band_px: int = SCROLL_BAND_PX) -> List[HeatmapPoint]:
    """Scroll positions floored into bands; value = samples + seconds spent."""
    bands: "OrderedDict[int, List[float]]" = OrderedDict()
    for s in samples:
        y = floor_to_grid(s.scroll_position or 0.0, band_px)
        agg = bands.setdefault(y, [0, 0.0])
        agg[0] += 1
        agg[1] += s.time_spent or 0
    return [
        HeatmapPoint(x=0, y=y, value=count + time_ms / 1000.0)
        for y, (count, time_ms) in bands.items()
    ]


def section_view_rates(
    samples: Sequence[Any],
    sections: Sequence[SectionRange],
) -> List[Dict[str, Any]]:
    """
    For each section: the share of sessions that scrolled at least to its
    top edge, and the mean seconds those sessions spent inside it
    (``start_y <= position <= end_y``).
    """
    max_position: Dict[str, float] = {}
    for s in samples:
        max_position[s.session_id] = max(max_position.get(s.session_id, 0.0), s.scroll_position or 0.0)
    total_sessions = len(max_position)

    results = []
    for section in sections:
        viewers = {sid for sid, top in max_position.items() if top >= section.start_y}
        time_ms = sum(
            s.time_spent or 0
            for s in samples
            if s.session_id in viewers and section.start_y <= (s.scroll_position or 0.0) <= section.end_y
        )
        results.append({
            "section": section.name,
            "view_rate": pct(len(viewers), total_sessions),
            "avg_time_spent": time_ms / len(viewers) / 1000.0 if viewers else 0.0,
        })
    return results
