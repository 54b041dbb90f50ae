"""
backend.analytics.views: Rollups over viewer sessions and section views.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from backend.core.constants import VIEW_TIMELINE_DAYS
from backend.core.utils import mean_safe, utcnow


def _ranked_counts(values: Iterable[str], key_name: str) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    for v in values:
        counts[v] = counts.get(v, 0) + 1
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    return [{key_name: k, "count": n} for k, n in ranked]


def section_totals(section_views: Iterable[Any]) -> List[Dict[str, Any]]:
    """Per section type: total and mean duration, ordered by total desc."""
    agg: Dict[str, List[float]] = {}
    for sv in section_views:
        entry = agg.setdefault(sv.section_type, [0.0, 0])
        entry[0] += sv.view_duration or 0
        entry[1] += 1
    rows = [
        {
            "section_type": section_type,
            "total_duration": duration,
            "average_duration": duration / count if count else 0.0,
            "view_count": count,
        }
        for section_type, (duration, count) in agg.items()
    ]
    rows.sort(key=lambda r: r["total_duration"], reverse=True)
    return rows


def view_timeline(
    sessions: Iterable[Any],
    days: int = VIEW_TIMELINE_DAYS,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Daily session counts for the trailing window, oldest first."""
    since = (now or utcnow()) - timedelta(days=days)
    per_day: Dict[str, int] = {}
    for s in sessions:
        if s.started_at is None or s.started_at < since:
            continue
        day = s.started_at.date().isoformat()
        per_day[day] = per_day.get(day, 0) + 1
    return [{"date": d, "views": per_day[d]} for d in sorted(per_day)]


def proposal_view_summary(
    sessions: Sequence[Any],
    section_views: Iterable[Any],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    avg_duration = mean_safe([s.total_duration or 0 for s in sessions])
    avg_depth = mean_safe([s.scroll_depth or 0.0 for s in sessions])

    return {
        "total_sessions": len(sessions),
        "unique_visitors": len({s.visitor_id or s.session_id for s in sessions}),
        "average_duration": int(math.floor(avg_duration + 0.5)),
        "average_scroll_depth": math.floor(avg_depth * 100 + 0.5) / 100,
        "top_sections": section_totals(section_views),
        "views_by_device": _ranked_counts((s.device or "unknown" for s in sessions), "device"),
        "views_by_location": _ranked_counts((s.country for s in sessions if s.country), "country"),
        "view_timeline": view_timeline(sessions, now=now),
    }


def section_heatmap(section_views: Iterable[Any]) -> List[Dict[str, Any]]:
    """Per (type, index): totals with running averages, ordered by index."""
    cells: Dict[tuple, Dict[str, Any]] = {}
    for sv in section_views:
        key = (sv.section_type, sv.section_index)
        cell = cells.get(key)
        duration = sv.view_duration or 0
        depth = sv.scroll_depth or 0.0
        if cell is None:
            cells[key] = {
                "section_type": sv.section_type,
                "section_index": sv.section_index,
                "total_duration": duration,
                "avg_duration": float(duration),
                "avg_scroll_depth": depth,
                "interaction_count": sv.interactions or 0,
                "view_count": 1,
            }
            continue
        n = cell["view_count"]
        cell["total_duration"] += duration
        cell["avg_duration"] = cell["total_duration"] / (n + 1)
        cell["avg_scroll_depth"] = (cell["avg_scroll_depth"] * n + depth) / (n + 1)
        cell["interaction_count"] += sv.interactions or 0
        cell["view_count"] = n + 1
    return sorted(cells.values(), key=lambda c: c["section_index"])
