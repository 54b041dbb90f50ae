"""
backend.analytics.clicks: Click aggregation and spatial bucketing.

Rows are duck-typed: anything exposing ``session_id``, ``element_id``,
``element_type``, ``element_text``, ``x``, ``y``, ``timestamp`` and
``meta`` (the interaction metadata dict) works, so tests can feed
``SimpleNamespace`` objects.
"""

from __future__ import annotations

import math
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from backend.core.constants import (
    CLICK_GRID_PX,
    MOST_CLICKED_DEFAULT_LIMIT,
    TOP_ELEMENTS_LIMIT,
)
from backend.core.utils import floor_to_grid, mean_safe
from backend.domain.models import HeatmapPoint


def element_key(row: Any) -> str:
    """Stable grouping key: the element id, else ``"type:text"``."""
    if row.element_id:
        return row.element_id
    return f"{row.element_type}:{row.element_text}"


def row_metadata(row: Any) -> Mapping[str, Any]:
    meta = getattr(row, "meta", None)
    return meta if isinstance(meta, Mapping) else {}


def meta_text(row: Any, key: str, default: str) -> str:
    """String metadata value; lists, objects and blanks read as ``default``."""
    value = row_metadata(row).get(key)
    if isinstance(value, str) and value:
        return value
    return default


def meta_number(row: Any, key: str) -> Optional[float]:
    """Finite numeric metadata value (numeric strings accepted), else ``None``."""
    value = row_metadata(row).get(key)
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return float(value)


def session_start_times(rows: Iterable[Any]) -> Dict[str, datetime]:
    """Earliest timestamp seen per session."""
    starts: Dict[str, datetime] = {}
    for row in rows:
        ts = row.timestamp
        if ts is None:
            continue
        current = starts.get(row.session_id)
        if current is None or ts < current:
            starts[row.session_id] = ts
    return starts


def grid_points(
    rows: Iterable[Any],
    grid_size: int = CLICK_GRID_PX,
    with_count: bool = True,
) -> List[HeatmapPoint]:
    """Floor coordinates into ``grid_size`` cells, one point per non-empty cell.

    Points come back in first-seen cell order.
    """
    cells: "OrderedDict[Tuple[int, int], int]" = OrderedDict()
    for row in rows:
        key = (floor_to_grid(row.x or 0.0, grid_size), floor_to_grid(row.y or 0.0, grid_size))
        cells[key] = cells.get(key, 0) + 1
    return [
        HeatmapPoint(x=x, y=y, value=float(count), count=count if with_count else None)
        for (x, y), count in cells.items()
    ]


def click_analytics(
    proposal_id: str,
    clicks: Sequence[Any],
    session_starts: Optional[Mapping[str, datetime]] = None,
) -> Dict[str, Any]:
    """
    Per-element click breakdown for one proposal.

    ``session_starts`` maps session id to the first recorded event of that
    session (any interaction type).  When omitted, the first click of each
    session is used instead.
    """
    if session_starts is None:
        session_starts = session_start_times(clicks)

    elements: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for click in clicks:
        key = element_key(click)
        entry = elements.get(key)
        if entry is None:
            entry = {
                "element_id": click.element_id,
                "element_type": click.element_type or "unknown",
                "element_text": click.element_text,
                "clicks": 0,
                "_sessions": set(),
                "_delays": [],
            }
            elements[key] = entry
        entry["clicks"] += 1
        entry["_sessions"].add(click.session_id)
        start = session_starts.get(click.session_id)
        if start is not None and click.timestamp is not None:
            entry["_delays"].append(max(0.0, (click.timestamp - start).total_seconds()))

    top_elements = []
    for entry in elements.values():
        top_elements.append({
            "element_id": entry["element_id"],
            "element_type": entry["element_type"],
            "element_text": entry["element_text"],
            "clicks": entry["clicks"],
            "unique_users": len(entry["_sessions"]),
            "avg_time_before_click": round(mean_safe(entry["_delays"]), 2),
        })
    top_elements.sort(key=lambda e: e["clicks"], reverse=True)

    clicks_by_section: Dict[str, int] = {}
    for click in clicks:
        section = meta_text(click, "section", "unknown")
        clicks_by_section[section] = clicks_by_section.get(section, 0) + 1

    return {
        "proposal_id": proposal_id,
        "total_clicks": len(clicks),
        "unique_sessions": len({c.session_id for c in clicks}),
        "unique_elements": len(elements),
        "top_elements": top_elements[:TOP_ELEMENTS_LIMIT],
        "clicks_by_section": clicks_by_section,
    }


def most_clicked_elements(
    clicks: Iterable[Any],
    limit: int = MOST_CLICKED_DEFAULT_LIMIT,
) -> List[Dict[str, Any]]:
    """Clicks grouped by (id, type, text) for rows with an element id."""
    counts: "OrderedDict[Tuple[str, Optional[str], Optional[str]], int]" = OrderedDict()
    for click in clicks:
        if not click.element_id:
            continue
        key = (click.element_id, click.element_type, click.element_text)
        counts[key] = counts.get(key, 0) + 1

    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    return [
        {
            "element_id": element_id,
            "element_type": element_type,
            "element_text": element_text,
            "clicks": count,
        }
        for (element_id, element_type, element_text), count in ranked[: max(0, limit)]
    ]
