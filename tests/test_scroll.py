"""Tests for backend.analytics.scroll."""

from types import SimpleNamespace

import pytest

from backend.analytics.scroll import (
    bucket_index,
    clamp_depth,
    depth_buckets,
    drop_off_points,
    retention_curve,
    scroll_bands,
    scroll_depth_analytics,
    section_view_rates,
)
from backend.domain.models import SectionRange


def _sample(session="s1", depth=0.0, position=0.0, time_spent=None):
    return SimpleNamespace(
        session_id=session,
        scroll_depth=depth,
        scroll_position=position,
        time_spent=time_spent,
    )


class TestBuckets:
    @pytest.mark.parametrize("depth,index", [(0, 0), (9.99, 0), (10, 1), (55, 5), (99.9, 9), (100, 9)])
    def test_bucket_index(self, depth, index):
        assert bucket_index(depth) == index

    def test_clamp_depth(self):
        assert clamp_depth(-5) == 0.0
        assert clamp_depth(140) == 100.0
        assert clamp_depth("42.5") == 42.5

    def test_depth_buckets_counts_and_percentages(self):
        buckets = depth_buckets([5, 15, 18, 100], total_views=4)
        assert [b.depth for b in buckets] == [10, 20, 30, 40, 50, 60, 70, 80, 90, 100]
        assert buckets[0].count == 1
        assert buckets[1].count == 2
        assert buckets[1].percentage == 50.0
        assert buckets[9].count == 1


class TestDropOff:
    def test_reports_losses_above_threshold_worst_first(self):
        buckets = depth_buckets([5] * 4 + [15] * 3 + [25] * 3, total_views=10)
        points = drop_off_points(buckets)
        # 4 -> 3 is 25%, 3 -> 3 is 0%, 3 -> 0 is 100%
        assert [(p.depth, p.drop_off_rate) for p in points] == [(30, 100.0), (10, 25.0)]

    def test_empty_buckets_are_ignored(self):
        assert drop_off_points(depth_buckets([], total_views=0)) == []


def test_retention_curve_counts_sessions_reaching_bucket_start():
    curve = retention_curve([0, 10, 55, 100])
    assert curve[0] == {"depth": 10, "percentage": 100.0}
    assert curve[1] == {"depth": 20, "percentage": 75.0}
    assert curve[5] == {"depth": 60, "percentage": 50.0}
    assert curve[9] == {"depth": 100, "percentage": 25.0}


class TestScrollDepthAnalytics:
    def test_empty(self):
        result = scroll_depth_analytics("p1", [])
        assert result["total_views"] == 0
        assert result["avg_scroll_depth"] == 0.0
        assert result["median_scroll_depth"] == 0.0
        assert all(b["percentage"] == 0.0 for b in result["depth_buckets"])
        assert result["drop_off_points"] == []

    def test_uses_max_depth_per_session(self):
        samples = [
            _sample("s1", 20), _sample("s1", 80),
            _sample("s2", 40),
            _sample("s3", 60), _sample("s3", 10),
        ]
        result = scroll_depth_analytics("p1", samples)
        assert result["total_views"] == 3
        assert result["avg_scroll_depth"] == pytest.approx(60.0)
        assert result["median_scroll_depth"] == 60
        assert result["depth_buckets"][8]["count"] == 1


def test_scroll_bands_value_adds_seconds():
    samples = [
        _sample(position=10, time_spent=2000),
        _sample(position=49, time_spent=500),
        _sample(position=120, time_spent=None),
    ]
    bands = scroll_bands(samples)
    assert [(b.x, b.y, b.value) for b in bands] == [(0, 0, 4.5), (0, 100, 1.0)]


class TestSectionViewRates:
    def test_rates_and_time(self):
        samples = [
            _sample("s1", position=0, time_spent=1000),
            _sample("s1", position=600, time_spent=3000),
            _sample("s2", position=100, time_spent=2000),
        ]
        sections = [SectionRange("intro", 0, 400), SectionRange("pricing", 500, 900)]
        intro, pricing = section_view_rates(samples, sections)

        assert intro == {"section": "intro", "view_rate": 100.0, "avg_time_spent": 1.5}
        assert pricing["view_rate"] == 50.0
        assert pricing["avg_time_spent"] == 3.0

    def test_section_nobody_reached(self):
        result = section_view_rates([_sample(position=10)], [SectionRange("footer", 5000, 6000)])
        assert result == [{"section": "footer", "view_rate": 0.0, "avg_time_spent": 0.0}]
