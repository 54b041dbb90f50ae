"""Tests for proposal authoring, lifecycle and pricing."""

from types import SimpleNamespace

import pytest

from backend.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from backend.database import Notification, ProposalInteraction, ProposalPayment, ProposalScrollTracking
from backend.services import proposals as proposal_service
from backend.services import teams as team_service
from backend.services.pricing import calculate_deposit, calculate_total, subtotal
from backend.services.serializers import proposal_dict, public_proposal_dict


# ---------------------------------------------------------------------------
# Pricing (pure)
# ---------------------------------------------------------------------------

def _priced(items, tax_rate=0.0, **deposit):
    block = SimpleNamespace(
        type="PRICING_TABLE",
        pricing_items=[SimpleNamespace(price=p, type=t) for p, t in items],
    )
    text = SimpleNamespace(type="TEXT", pricing_items=[SimpleNamespace(price=999.0, type="REQUIRED")])
    return SimpleNamespace(
        blocks=[text, block],
        tax_rate=tax_rate,
        deposit_required=deposit.get("required", False),
        deposit_amount=deposit.get("amount"),
        deposit_percentage=deposit.get("percentage"),
    )


class TestPricing:
    def test_subtotal_ignores_optional_items_and_non_pricing_blocks(self):
        proposal = _priced([(100.0, "REQUIRED"), (50.0, "OPTIONAL"), (25.5, "REQUIRED")])
        assert subtotal(proposal) == 125.5

    def test_quantity_items_count_at_their_minimum(self):
        proposal = _priced([(100.0, "REQUIRED")])
        proposal.blocks[1].pricing_items.append(SimpleNamespace(price=20.0, type="QUANTITY", min_quantity=3))
        assert subtotal(proposal) == 160.0

    def test_total_applies_tax(self):
        assert calculate_total(_priced([(1000.0, "REQUIRED")], tax_rate=15)) == 1150.0

    def test_total_rounds_to_cents(self):
        assert calculate_total(_priced([(10.125, "REQUIRED")])) == 10.13

    def test_no_deposit_unless_required(self):
        assert calculate_deposit(_priced([(1000.0, "REQUIRED")], amount=200)) == 0.0

    def test_deposit_explicit_amount_wins(self):
        proposal = _priced([(1000.0, "REQUIRED")], required=True, amount=250, percentage=10)
        assert calculate_deposit(proposal) == 250.0

    def test_deposit_percentage_of_taxed_total(self):
        proposal = _priced([(1000.0, "REQUIRED")], tax_rate=10, required=True, percentage=30)
        assert calculate_deposit(proposal) == 330.0

    def test_deposit_defaults_to_half(self):
        proposal = _priced([(1001.0, "REQUIRED")], required=True)
        assert calculate_deposit(proposal) == 500.5


# ---------------------------------------------------------------------------
# Authoring
# ---------------------------------------------------------------------------

class TestAuthoring:
    def test_create_builds_blocks_and_defaults(self, db_session, make_user, make_proposal):
        owner = make_user()
        proposal = make_proposal(owner, currency="nzd")

        assert proposal.status == "DRAFT"
        assert proposal.currency == "NZD"
        assert len(proposal.slug) == 12
        assert [b.type for b in proposal.blocks] == ["TEXT", "PRICING_TABLE"]
        assert [b.order for b in proposal.blocks] == [0, 1]
        assert len(proposal.blocks[1].pricing_items) == 3

        data = proposal_dict(proposal)
        assert data["total"] == 1500.0
        assert data["deposit_due"] == 0.0
        assert data["blocks"][1]["pricing_items"][2]["type"] == "OPTIONAL"

    def test_public_view_hides_owner_identifiers(self, db_session, make_user, make_proposal):
        proposal = make_proposal(make_user())
        data = public_proposal_dict(proposal)
        assert "user_id" not in data and "team_id" not in data
        assert data["slug"] == proposal.slug

    def test_list_filters_by_status(self, db_session, make_user, make_proposal):
        owner = make_user()
        draft = make_proposal(owner, title="Draft one")
        sent = make_proposal(owner, title="Sent one")
        proposal_service.send_proposal(db_session, sent.id, owner.id)

        assert {p.id for p in proposal_service.list_proposals(db_session, owner.id)} == {draft.id, sent.id}
        assert [p.id for p in proposal_service.list_proposals(db_session, owner.id, "SENT")] == [sent.id]

    def test_update_replaces_blocks(self, db_session, make_user, make_proposal):
        owner = make_user()
        proposal = make_proposal(owner)
        updated = proposal_service.update_proposal(db_session, proposal.id, owner.id, {
            "title": "Renamed",
            "currency": "eur",
            "blocks": [{"type": "PRICING_TABLE", "pricing_items": [{"name": "Retainer", "price": 90}]}],
        })
        assert updated.title == "Renamed"
        assert updated.currency == "EUR"
        assert calculate_total(updated) == 90.0

    def test_only_owner_can_edit(self, db_session, make_user, make_proposal):
        proposal = make_proposal(make_user())
        stranger = make_user("other@example.com")
        with pytest.raises(ForbiddenError):
            proposal_service.update_proposal(db_session, proposal.id, stranger.id, {"title": "x"})

    def test_unknown_proposal(self, db_session, make_user):
        with pytest.raises(NotFoundError):
            proposal_service.get_owned_proposal(db_session, "missing", make_user().id)

    def test_delete_removes_analytics_rows(self, db_session, make_user, make_proposal):
        owner = make_user()
        proposal = make_proposal(owner)
        db_session.add(ProposalInteraction(proposal_id=proposal.id, session_id="s1", type="click"))
        db_session.add(ProposalScrollTracking(
            proposal_id=proposal.id, session_id="s1", scroll_depth=50,
            scroll_position=400, document_height=2000, viewport_height=800,
        ))
        db_session.commit()

        proposal_service.delete_proposal(db_session, proposal.id, owner.id)
        assert db_session.query(ProposalInteraction).count() == 0
        assert db_session.query(ProposalScrollTracking).count() == 0
        with pytest.raises(NotFoundError):
            proposal_service.get_by_slug(db_session, proposal.slug)

    def test_delete_refused_while_payments_exist(self, db_session, make_user, make_proposal):
        owner = make_user()
        proposal = make_proposal(owner)
        db_session.add(ProposalPayment(
            proposal_id=proposal.id, type="deposit", amount=750.0, currency="USD",
            stripe_payment_intent_id="pi_1", status="succeeded",
        ))
        db_session.commit()

        with pytest.raises(ConflictError):
            proposal_service.delete_proposal(db_session, proposal.id, owner.id)
        assert db_session.query(ProposalPayment).count() == 1
        assert proposal_service.get_by_slug(db_session, proposal.slug).id == proposal.id


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:
    def test_send_then_resend(self, db_session, make_user, make_proposal):
        owner = make_user()
        proposal = make_proposal(owner)
        sent = proposal_service.send_proposal(db_session, proposal.id, owner.id)
        assert sent.status == "SENT"
        assert sent.sent_at is not None
        assert proposal_service.send_proposal(db_session, proposal.id, owner.id).status == "SENT"

    def test_approve_signs_and_locks(self, db_session, make_user, make_proposal):
        owner = make_user()
        proposal = make_proposal(owner)
        proposal_service.send_proposal(db_session, proposal.id, owner.id)

        signed = proposal_service.approve_proposal(db_session, proposal.slug, {
            "name": "Jane Client", "email": "jane@acme.test", "signature_data": "data:image/png;base64,AAA",
        })
        assert signed.status == "SIGNED"
        assert signed.locked is True
        assert signed.signer_name == "Jane Client"
        assert signed.signed_at is not None

        note = db_session.query(Notification).one()
        assert note.type == "proposal_signed"
        assert note.user_id == owner.id

        with pytest.raises(ForbiddenError):
            proposal_service.update_proposal(db_session, proposal.id, owner.id, {"title": "late edit"})
        with pytest.raises(ForbiddenError):
            proposal_service.approve_proposal(db_session, proposal.slug, {})
        with pytest.raises(ForbiddenError):
            proposal_service.decline_proposal(db_session, proposal.slug)
        with pytest.raises(BadRequestError):
            proposal_service.send_proposal(db_session, proposal.id, owner.id)

    def test_decline_records_reason(self, db_session, make_user, make_proposal):
        owner = make_user()
        proposal = make_proposal(owner)
        declined = proposal_service.decline_proposal(db_session, proposal.slug, "Over budget")
        assert declined.status == "DECLINED"
        assert declined.decline_reason == "Over budget"
        assert db_session.query(Notification).one().type == "proposal_declined"

        with pytest.raises(ForbiddenError):
            proposal_service.approve_proposal(db_session, proposal.slug, {"name": "Too late"})

    def test_team_counters_track_sent_and_won(self, db_session, make_user, make_team, make_proposal):
        owner = make_user()
        team = make_team(owner)
        proposal = make_proposal(owner, team_id=team.id, tax_rate=10)

        proposal_service.send_proposal(db_session, proposal.id, owner.id)
        proposal_service.send_proposal(db_session, proposal.id, owner.id)
        proposal_service.approve_proposal(db_session, proposal.slug, {"name": "Jane"})

        member = team_service.get_membership(db_session, team.id, owner.id)
        assert member.proposals_sent == 1
        assert member.proposals_won == 1
        assert member.total_revenue == 1650.0


# ---------------------------------------------------------------------------
# Team access
# ---------------------------------------------------------------------------

class TestAccess:
    def test_team_member_with_analytics_permission(self, db_session, make_user, make_team, make_proposal):
        owner = make_user()
        team = make_team(owner)
        viewer = make_user("viewer@example.com")
        team_service.invite_member(db_session, team.id, owner.id, viewer.email, "VIEWER")
        proposal = make_proposal(owner, team_id=team.id)

        found = proposal_service.get_accessible_proposal(db_session, proposal.id, viewer.id)
        assert found.id == proposal.id

    def test_outsider_is_rejected(self, db_session, make_user, make_team, make_proposal):
        owner = make_user()
        team = make_team(owner)
        proposal = make_proposal(owner, team_id=team.id)
        outsider = make_user("outsider@example.com")
        with pytest.raises(ForbiddenError):
            proposal_service.get_accessible_proposal(db_session, proposal.id, outsider.id)

    def test_creating_in_team_requires_permission(self, db_session, make_user, make_team, make_proposal):
        owner = make_user()
        team = make_team(owner)
        viewer = make_user("viewer@example.com")
        team_service.invite_member(db_session, team.id, owner.id, viewer.email, "VIEWER")
        with pytest.raises(ForbiddenError):
            make_proposal(viewer, team_id=team.id)
