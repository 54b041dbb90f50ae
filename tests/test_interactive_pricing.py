"""Tests for backend.services.interactive_pricing (client selections on the public page)."""

import pytest

from backend.core.errors import ForbiddenError, NotFoundError
from backend.database import ProposalPayment
from backend.payment_gateway import StripeGateway, set_gateway
from backend.services import interactive_pricing
from backend.services import payments as payment_service
from backend.services import proposals as proposal_service
from backend.services.serializers import proposal_dict

BLOCKS = [
    {"type": "PRICING_TABLE", "pricing_items": [
        {"name": "Design", "price": 1000.0},
        {"name": "Seats", "price": 50.0, "type": "QUANTITY", "min_quantity": 2, "max_quantity": 10},
        {"name": "Hosting", "price": 300.0, "type": "OPTIONAL"},
    ]},
]


@pytest.fixture
def priced(db_session, make_user, make_proposal):
    proposal = make_proposal(
        make_user(), blocks=BLOCKS, tax_rate=10, deposit_required=True, deposit_percentage=50,
    )
    design, seats, hosting = proposal.blocks[0].pricing_items
    return proposal, design, seats, hosting


def _choose(item, **choice):
    return dict(item_id=item.id, selected=choice.get("selected"), quantity=choice.get("quantity"))


class TestPriceSelections:
    def test_initial_breakdown_matches_authored_total(self, db_session, priced, fake_gateway):
        proposal, design, seats, hosting = priced
        result = interactive_pricing.pricing_breakdown(db_session, proposal.slug)

        assert [(line.name, line.quantity, line.selected, line.line_total) for line in result.line_items] == [
            ("Design", 1, True, 1000.0),
            ("Seats", 2, True, 100.0),
            ("Hosting", 1, False, 0.0),
        ]
        assert (result.subtotal, result.tax_amount, result.total) == (1100.0, 110.0, 1210.0)
        assert result.deposit_amount == 605.0
        assert result.currency == "USD"
        assert result.total == proposal_dict(proposal)["total"]
        assert result.payment_intent_client_secret is None
        assert fake_gateway.intents == []

    def test_quantities_are_clamped_and_required_items_stay_selected(self, priced):
        proposal, design, seats, hosting = priced
        result = interactive_pricing.price_selections(proposal, [
            _choose(design, selected=False),
            _choose(seats, quantity=50),
            _choose(hosting, selected=True),
            {"item_id": "not-an-item", "selected": True, "quantity": 3},
        ])
        lines = {line.name: line for line in result.line_items}
        assert lines["Design"].selected is True
        assert lines["Seats"].quantity == 10
        assert lines["Hosting"].line_total == 300.0
        assert (result.subtotal, result.total, result.deposit_amount) == (1800.0, 1980.0, 990.0)

        low = interactive_pricing.price_selections(proposal, [_choose(seats, quantity=1)])
        assert {line.name: line.quantity for line in low.line_items}["Seats"] == 2

    def test_unknown_slug(self, db_session):
        with pytest.raises(NotFoundError):
            interactive_pricing.pricing_breakdown(db_session, "missing")


class TestDepositIntent:
    def test_intent_opened_then_moved_with_selections(self, db_session, priced, fake_gateway):
        proposal, _, seats, hosting = priced

        _, first = interactive_pricing.calculate_pricing(db_session, proposal.slug, [
            _choose(seats, quantity=10), _choose(hosting, selected=True),
        ])
        assert first.deposit_amount == 990.0
        assert first.payment_intent_client_secret == "pi_1_secret"
        [sent] = fake_gateway.intents
        assert sent["amount_cents"] == 99000
        assert sent["receipt_email"] == "buyer@acme.test"
        assert sent["metadata"]["payment_type"] == "deposit"

        _, second = interactive_pricing.calculate_pricing(db_session, proposal.slug, [])
        assert second.deposit_amount == 605.0
        assert second.payment_intent_client_secret == "pi_1_secret"
        assert [(u["id"], u["amount_cents"]) for u in fake_gateway.updates] == [("pi_1", 60500)]
        assert len(fake_gateway.intents) == 1

        row = db_session.query(ProposalPayment).one()
        assert (row.type, row.status, row.amount) == ("deposit", "pending", 605.0)

        # the webhook settles the row the pricing flow opened
        payment_service.handle_webhook_event(db_session, {
            "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}},
        })
        assert proposal.deposit_paid is True
        _, after = interactive_pricing.calculate_pricing(db_session, proposal.slug, [])
        assert after.payment_intent_client_secret is None
        assert len(fake_gateway.updates) == 1

    def test_no_intent_without_deposit(self, db_session, make_user, make_proposal, fake_gateway):
        proposal = make_proposal(make_user())
        _, result = interactive_pricing.calculate_pricing(db_session, proposal.slug, [])
        assert result.total == 1500.0
        assert result.deposit_amount == 0.0
        assert fake_gateway.intents == []

    def test_gateway_failure_still_returns_prices(self, db_session, priced):
        proposal, *_ = priced
        set_gateway(StripeGateway("", ""))
        _, result = interactive_pricing.calculate_pricing(db_session, proposal.slug, [])
        assert result.total == 1210.0
        assert result.payment_intent_client_secret is None
        assert db_session.query(ProposalPayment).count() == 0

    def test_finalised_or_declined_proposals_are_frozen(self, db_session, priced, make_user, make_proposal,
                                                        fake_gateway):
        proposal, *_ = priced
        proposal_service.approve_proposal(db_session, proposal.slug, {"name": "Jane"})
        with pytest.raises(ForbiddenError):
            interactive_pricing.calculate_pricing(db_session, proposal.slug, [])

        declined = make_proposal(make_user("other@example.com"))
        proposal_service.decline_proposal(db_session, declined.slug)
        with pytest.raises(ForbiddenError):
            interactive_pricing.calculate_pricing(db_session, declined.slug, [])
        assert fake_gateway.intents == []
