"""Tests for backend.services.heatmaps (capture + analytics over SQLite)."""

from datetime import datetime, timezone

import pytest

from backend.core.errors import ForbiddenError
from backend.core.utils import utcnow
from backend.database import ProposalEngagement, ProposalInteraction, ProposalPayment
from backend.metrics import metrics_snapshot
from backend.services import heatmaps as heatmap_service

# 2024-03-04 10:00:00 UTC, a Monday morning
T0_MS = int(datetime(2024, 3, 4, 10, 0, tzinfo=timezone.utc).timestamp() * 1000)


def _interaction(proposal_id, session_id="s1", type_="click", x=0.0, y=0.0, element_id="cta",
                 timestamp=T0_MS, metadata=None, **extra):
    data = {
        "proposal_id": proposal_id,
        "session_id": session_id,
        "type": type_,
        "element_id": element_id,
        "element_type": "button",
        "element_text": "Accept",
        "x": x,
        "y": y,
        "timestamp": timestamp,
        "metadata": metadata,
    }
    data.update(extra)
    return data


def _scroll(proposal_id, session_id="s1", depth=50.0, position=500.0, time_spent=1000):
    return {
        "proposal_id": proposal_id,
        "session_id": session_id,
        "scroll_depth": depth,
        "scroll_position": position,
        "document_height": 3000.0,
        "viewport_height": 900.0,
        "time_spent": time_spent,
        "timestamp": T0_MS,
    }


@pytest.fixture
def owner_and_proposal(make_user, make_proposal):
    owner = make_user()
    return owner, make_proposal(owner)


class TestCapture:
    def test_record_interaction_converts_timestamp_and_metadata(self, db_session, owner_and_proposal):
        _, proposal = owner_and_proposal
        row = heatmap_service.record_interaction(
            db_session, _interaction(proposal.id, metadata={"section": "pricing"}),
        )
        stored = db_session.get(ProposalInteraction, row.id)
        assert stored.timestamp == datetime(2024, 3, 4, 10, 0)
        assert stored.meta == {"section": "pricing"}
        assert metrics_snapshot()["events_recorded"] == 1

    def test_batch(self, db_session, owner_and_proposal):
        _, proposal = owner_and_proposal
        count = heatmap_service.record_interactions_batch(db_session, [
            _interaction(proposal.id, "s1"), _interaction(proposal.id, "s2", type_="hover"),
        ])
        assert count == 2
        assert db_session.query(ProposalInteraction).count() == 2
        assert metrics_snapshot()["events_recorded"] == 2

    def test_scroll_depth_is_clamped(self, db_session, owner_and_proposal):
        _, proposal = owner_and_proposal
        row = heatmap_service.record_scroll(db_session, _scroll(proposal.id, depth=130))
        assert row.scroll_depth == 100.0

    def test_engagement_summary(self, db_session, owner_and_proposal):
        _, proposal = owner_and_proposal
        heatmap_service.record_engagement(db_session, {
            "proposal_id": proposal.id, "session_id": "s1", "time_spent": 42_000,
            "max_scroll_depth": -3, "pricing_viewed": True, "sections_viewed": ["intro", "pricing"],
        })
        row = db_session.query(ProposalEngagement).one()
        assert row.max_scroll_depth == 0.0
        assert row.pricing_viewed is True
        assert row.clicks == 0
        assert row.sections_viewed == ["intro", "pricing"]


class TestClickAndScrollAnalytics:
    def test_click_analytics_measures_from_first_event_of_any_type(self, db_session, owner_and_proposal):
        owner, proposal = owner_and_proposal
        heatmap_service.record_interactions_batch(db_session, [
            _interaction(proposal.id, type_="hover", timestamp=T0_MS),
            _interaction(proposal.id, timestamp=T0_MS + 8000),
            _interaction(proposal.id, element_id=None, timestamp=T0_MS + 9000),
        ])
        result = heatmap_service.click_analytics(db_session, owner.id, proposal.id)
        assert result["total_clicks"] == 2
        assert result["top_elements"][0]["avg_time_before_click"] == 8.0

        most = heatmap_service.most_clicked_elements(db_session, owner.id, proposal.id)
        assert most == [{"element_id": "cta", "element_type": "button", "element_text": "Accept", "clicks": 1}]

    def test_click_heatmap(self, db_session, owner_and_proposal):
        owner, proposal = owner_and_proposal
        heatmap_service.record_interactions_batch(db_session, [
            _interaction(proposal.id, x=105, y=33), _interaction(proposal.id, x=110, y=39),
        ])
        assert heatmap_service.click_heatmap(db_session, owner.id, proposal.id) == [
            {"x": 100, "y": 20, "value": 2.0, "count": 2},
        ]

    def test_scroll_endpoints(self, db_session, owner_and_proposal):
        owner, proposal = owner_and_proposal
        heatmap_service.record_scroll(db_session, _scroll(proposal.id, "s1", depth=95, position=2100, time_spent=500))
        heatmap_service.record_scroll(db_session, _scroll(proposal.id, "s2", depth=15, position=120, time_spent=2000))

        depth = heatmap_service.scroll_depth_analytics(db_session, owner.id, proposal.id)
        assert depth["total_views"] == 2
        assert depth["avg_scroll_depth"] == 55.0

        bands = heatmap_service.scroll_heatmap(db_session, owner.id, proposal.id)
        assert bands == [{"x": 0, "y": 2100, "value": 1.5}, {"x": 0, "y": 100, "value": 3.0}]

        rates = heatmap_service.section_view_rates(db_session, owner.id, proposal.id, [
            {"name": "pricing", "start_y": 2000, "end_y": 2500},
        ])
        assert rates == [{"section": "pricing", "view_rate": 50.0, "avg_time_spent": 0.5}]


class TestHeatmapGeneration:
    def test_generate_click_heatmap_payload(self, db_session, owner_and_proposal):
        owner, proposal = owner_and_proposal
        heatmap_service.record_interactions_batch(db_session, [
            _interaction(proposal.id, "s1", x=5, y=5),
            _interaction(proposal.id, "s2", type_="hover", x=40, y=40),
        ])
        result = heatmap_service.generate_heatmap(db_session, owner.id, {"proposal_id": proposal.id, "type": "click"})
        assert result["type"] == "click"
        assert result["data_points"] == [{"x": 0, "y": 0, "value": 1.0, "count": 1}]
        assert result["total_interactions"] == 2
        assert result["unique_sessions"] == 2
        assert (result["width"], result["height"]) == (1920, 1080)

    def test_generate_movement_heatmap(self, db_session, owner_and_proposal):
        owner, proposal = owner_and_proposal
        heatmap_service.record_interaction(db_session, _interaction(proposal.id, type_="hover", x=40, y=70))
        result = heatmap_service.generate_heatmap(
            db_session, owner.id, {"proposal_id": proposal.id, "type": "movement", "intensity": 2, "width": 800},
        )
        assert result["data_points"] == [{"x": 30, "y": 60, "value": 2.0}]
        assert result["width"] == 800

    def test_attention_sections(self, db_session, owner_and_proposal):
        owner, proposal = owner_and_proposal
        heatmap_service.record_interaction(db_session, _interaction(proposal.id, metadata={"section": "intro"}))
        result = heatmap_service.attention_heatmap(db_session, owner.id, proposal.id)
        assert result["sections"][0]["section_id"] == "intro"

    def test_analytics_require_access(self, db_session, owner_and_proposal, make_user):
        _, proposal = owner_and_proposal
        stranger = make_user("stranger@example.com")
        with pytest.raises(ForbiddenError):
            heatmap_service.click_analytics(db_session, stranger.id, proposal.id)
        with pytest.raises(ForbiddenError):
            heatmap_service.realtime_stats(db_session, stranger.id, proposal.id)


class TestEngagementMetrics:
    def test_metrics_are_cached_until_new_events(self, db_session, owner_and_proposal):
        owner, proposal = owner_and_proposal
        heatmap_service.record_interaction(db_session, _interaction(proposal.id, "s1"))
        heatmap_service.record_scroll(db_session, _scroll(proposal.id, "s1", depth=60, time_spent=40_000))

        first = heatmap_service.engagement_metrics(db_session, owner.id, proposal.id)
        assert first["total_views"] == 1
        assert first["engagement_rate"] == 100.0
        assert first["conversion_rate"] == 0.0

        assert heatmap_service.engagement_metrics(db_session, owner.id, proposal.id) == first
        assert metrics_snapshot()["cache_hit_rate"] == 0.5

        heatmap_service.record_interaction(db_session, _interaction(proposal.id, "s2"))
        refreshed = heatmap_service.engagement_metrics(db_session, owner.id, proposal.id)
        assert refreshed["total_views"] == 2

    def test_signed_proposal_counts_as_converted(self, db_session, owner_and_proposal):
        owner, proposal = owner_and_proposal
        heatmap_service.record_interaction(db_session, _interaction(proposal.id, "s1"))
        proposal.status = "SIGNED"
        db_session.commit()
        result = heatmap_service.engagement_metrics(db_session, owner.id, proposal.id)
        assert result["conversion_rate"] == 100.0


class TestPredictiveAndRealtime:
    def test_predictive_score_for_session(self, db_session, owner_and_proposal):
        owner, proposal = owner_and_proposal
        heatmap_service.record_interactions_batch(db_session, [
            _interaction(proposal.id, "old"),
            _interaction(proposal.id, "s1", element_type="pricing-table"),
        ])
        heatmap_service.record_scroll(db_session, _scroll(proposal.id, "s1", depth=90, time_spent=200_000))

        result = heatmap_service.predictive_score(db_session, owner.id, proposal.id, "s1")
        assert result["session_id"] == "s1"
        assert result["factors"]["returning_visitor"]["value"] is True
        assert result["factors"]["pricing_viewed"]["value"] is True
        assert result["factors"]["time_of_day"]["value"] == "business"
        assert result["factors"]["scroll_depth"]["value"] == 90.0

    def test_proposal_wide_score_is_not_returning(self, db_session, owner_and_proposal):
        owner, proposal = owner_and_proposal
        heatmap_service.record_interaction(db_session, _interaction(proposal.id, "s1"))
        result = heatmap_service.predictive_score(db_session, owner.id, proposal.id)
        assert result["session_id"] is None
        assert result["factors"]["returning_visitor"]["value"] is False

    def test_realtime_window(self, db_session, owner_and_proposal):
        owner, proposal = owner_and_proposal
        heatmap_service.record_interactions_batch(db_session, [
            _interaction(proposal.id, "s1", timestamp=None, metadata={"country": "NZ", "deviceType": "mobile"}),
            _interaction(proposal.id, "s2", timestamp=None, metadata={"country": "NZ"}),
            _interaction(proposal.id, "stale", timestamp=T0_MS),
        ])
        db_session.add(ProposalPayment(
            proposal_id=proposal.id, type="deposit", amount=100.0, currency="USD",
            status="succeeded", paid_at=utcnow(),
        ))
        db_session.commit()

        stats = heatmap_service.realtime_stats(db_session, owner.id, proposal.id, minutes=5)
        assert stats["current_viewers"] == 2
        assert stats["recent_views"] == 2
        assert stats["recent_conversions"] == 1
        assert stats["active_regions"] == [{"country": "NZ", "viewers": 2}]
        assert stats["devices"] == {"desktop": 1, "mobile": 1, "tablet": 0}
        assert stats["avg_engagement_score"] > 0


class TestStoredMetadataRobustness:
    def test_owner_analytics_survive_malformed_viewer_metadata(self, db_session, owner_and_proposal):
        owner, proposal = owner_and_proposal
        heatmap_service.record_interactions_batch(db_session, [
            _interaction(proposal.id, "s1", metadata={"section": ["pricing"], "deviceType": ["x"]}),
            _interaction(proposal.id, "s1", metadata={"section": "intro", "dwellTime": "long"}),
        ])
        heatmap_service.record_scroll(db_session, _scroll(proposal.id, "s1"))

        attention = heatmap_service.attention_heatmap(db_session, owner.id, proposal.id)
        assert {s["section_id"] for s in attention["sections"]} == {"unknown", "intro"}
        metrics = heatmap_service.engagement_metrics(db_session, owner.id, proposal.id)
        assert metrics["total_views"] == 1
        score = heatmap_service.predictive_score(db_session, owner.id, proposal.id, "s1")
        assert score["factors"]["device_type"]["value"] == "desktop"
