"""
backend.analytics.engagement: Proposal-level engagement rollups.

Combines click, scroll and hover aggregates into the heatmap variants and
computes the dashboard engagement metrics and per-section attention.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from backend.analytics.clicks import grid_points, meta_number, meta_text
from backend.analytics.scroll import scroll_bands, session_totals
from backend.core.constants import (
    ATTENTION_CLICK_WEIGHT,
    ATTENTION_DWELL_CAP,
    ATTENTION_DWELL_DIVISOR,
    ATTENTION_INTERACTION_WEIGHT,
    ATTENTION_VIEW_WEIGHT,
    BOUNCE_MAX_SECONDS,
    CLICK_GRID_PX,
    ENGAGED_MIN_SCROLL_DEPTH,
    ENGAGED_MIN_TIME_MS,
    MOVEMENT_GRID_PX,
    REALTIME_DEVICES,
    REALTIME_TOP_REGIONS,
)
from backend.core.utils import mean_safe, pct, upper_median
from backend.domain.enums import HeatmapType
from backend.domain.models import HeatmapPoint


# ---------------------------------------------------------------------------
# Heatmap variants
# ---------------------------------------------------------------------------

def attention_points(clicks: Sequence[Any], scroll_samples: Sequence[Any]) -> List[HeatmapPoint]:
    """Click cells weighted x3 followed by the scroll bands."""
    points = [
        HeatmapPoint(x=p.x, y=p.y, value=p.value * ATTENTION_CLICK_WEIGHT, count=p.count)
        for p in grid_points(clicks, CLICK_GRID_PX)
    ]
    points.extend(scroll_bands(scroll_samples))
    return points


def heatmap_points(
    heatmap_type: HeatmapType,
    clicks: Sequence[Any] = (),
    scroll_samples: Sequence[Any] = (),
    hovers: Sequence[Any] = (),
    intensity: Optional[float] = None,
) -> List[HeatmapPoint]:
    if heatmap_type is HeatmapType.CLICK:
        points = grid_points(clicks, CLICK_GRID_PX)
    elif heatmap_type is HeatmapType.SCROLL:
        points = scroll_bands(scroll_samples)
    elif heatmap_type is HeatmapType.ATTENTION:
        points = attention_points(clicks, scroll_samples)
    elif heatmap_type is HeatmapType.MOVEMENT:
        points = grid_points(hovers, MOVEMENT_GRID_PX, with_count=False)
    else:
        raise ValueError(f"unsupported heatmap type: {heatmap_type!r}")

    if intensity is not None:
        for p in points:
            p.value = p.value * intensity
    return points


# ---------------------------------------------------------------------------
# Section attention
# ---------------------------------------------------------------------------

def section_attention(interactions: Iterable[Any]) -> List[Dict[str, Any]]:
    """
    Group interactions by ``metadata.section`` and score each section.

    attention = min(100, 0.3 * view_rate + 0.3 * interaction_rate
                         + min(avg_dwell / 100, 40))
    """
    sections: Dict[str, Dict[str, Any]] = {}
    all_sessions: Set[str] = set()

    for row in interactions:
        name = meta_text(row, "section", "unknown")
        data = sections.setdefault(name, {"sessions": set(), "interactions": 0, "dwell": []})
        data["sessions"].add(row.session_id)
        data["interactions"] += 1
        dwell = meta_number(row, "dwellTime")
        if dwell:
            data["dwell"].append(dwell)
        all_sessions.add(row.session_id)

    total_sessions = len(all_sessions)
    results = []
    for name, data in sections.items():
        section_sessions = len(data["sessions"])
        avg_dwell = mean_safe(data["dwell"])
        view_rate = pct(section_sessions, total_sessions)
        interaction_rate = pct(data["interactions"], section_sessions)
        score = min(
            100.0,
            ATTENTION_VIEW_WEIGHT * view_rate
            + ATTENTION_INTERACTION_WEIGHT * interaction_rate
            + min(avg_dwell / ATTENTION_DWELL_DIVISOR, ATTENTION_DWELL_CAP),
        )
        results.append({
            "section_id": name,
            "section_name": name,
            "attention_score": score,
            "avg_dwell_time": avg_dwell,
            "view_rate": view_rate,
            "interaction_rate": interaction_rate,
        })
    results.sort(key=lambda s: s["attention_score"], reverse=True)
    return results


# ---------------------------------------------------------------------------
# Engagement metrics
# ---------------------------------------------------------------------------

def engagement_metrics(
    proposal_id: str,
    session_ids: Iterable[str],
    scroll_samples: Sequence[Any],
    converted: bool,
    top_sections: Sequence[Dict[str, Any]] = (),
) -> Dict[str, Any]:
    """
    Dashboard engagement summary.

    ``session_ids`` are the distinct interaction sessions; every rate is a
    share of that count and is 0 when there are no views.
    """
    total_views = len(set(session_ids))
    per_session = list(session_totals(scroll_samples).values())

    times = [s["time_ms"] / 1000.0 for s in per_session if s["time_ms"] > 0]
    depths = [s["max_depth"] for s in per_session]

    bounces = sum(1 for t in times if t < BOUNCE_MAX_SECONDS)
    engaged = sum(
        1 for s in per_session
        if s["time_ms"] >= ENGAGED_MIN_TIME_MS and s["max_depth"] >= ENGAGED_MIN_SCROLL_DEPTH
    )

    return {
        "proposal_id": proposal_id,
        "total_views": total_views,
        "unique_visitors": total_views,
        "avg_time_spent": mean_safe(times),
        "median_time_spent": upper_median(times),
        "avg_scroll_depth": mean_safe(depths),
        "bounce_rate": pct(bounces, total_views),
        "engagement_rate": pct(engaged, total_views),
        "conversion_rate": pct(1 if converted else 0, total_views),
        "top_performing_sections": list(top_sections),
    }


# ---------------------------------------------------------------------------
# Realtime breakdowns
# ---------------------------------------------------------------------------

def active_regions(interactions: Iterable[Any], limit: int = REALTIME_TOP_REGIONS) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    for row in interactions:
        country = meta_text(row, "country", "Unknown")
        counts[country] = counts.get(country, 0) + 1
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    return [{"country": c, "viewers": n} for c, n in ranked[:limit]]


def device_counts(interactions: Iterable[Any]) -> Dict[str, int]:
    devices = {name: 0 for name in REALTIME_DEVICES}
    for row in interactions:
        device = meta_text(row, "deviceType", "desktop")
        if device in devices:
            devices[device] += 1
    return devices
