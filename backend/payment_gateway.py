"""
Thin wrapper around the Stripe SDK.

Services talk to ``get_gateway()`` instead of ``stripe`` directly so tests
can swap in a fake.  Every Stripe failure surfaces as ``PaymentGatewayError``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import stripe

from backend import config
from backend.core.errors import BadRequestError, PaymentGatewayError

logger = logging.getLogger(__name__)


class StripeGateway:
    def __init__(self, api_key: str, webhook_secret: str = "") -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def _call(self, what: str, fn, **params) -> Any:
        if not self.api_key:
            raise PaymentGatewayError("Payments are not configured")
        try:
            return fn(api_key=self.api_key, **params)
        except stripe.StripeError as exc:
            logger.error("Stripe %s failed: %s", what, exc)
            raise PaymentGatewayError(f"Payment provider rejected {what}") from exc

    # -- payments ------------------------------------------------------------

    def create_payment_intent(self, amount_cents: int, currency: str, metadata: Dict[str, str],
                              receipt_email: Optional[str] = None, description: Optional[str] = None,
                              application_fee_amount: Optional[int] = None,
                              destination: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "metadata": metadata,
            "receipt_email": receipt_email,
            "description": description,
        }
        if destination:
            params["application_fee_amount"] = application_fee_amount
            params["transfer_data"] = {"destination": destination}
        intent = self._call("payment intent", stripe.PaymentIntent.create, **params)
        return {"id": intent.id, "client_secret": intent.client_secret}

    def update_payment_intent(self, payment_intent_id: str, amount_cents: int,
                              metadata: Dict[str, str]) -> Dict[str, Any]:
        intent = self._call(
            "payment intent update", stripe.PaymentIntent.modify, id=payment_intent_id,
            amount=amount_cents, metadata=metadata,
        )
        return {"id": intent.id, "client_secret": intent.client_secret}

    def refund(self, payment_intent_id: str) -> Dict[str, Any]:
        refund = self._call(
            "refund", stripe.Refund.create,
            payment_intent=payment_intent_id, reason="requested_by_customer",
        )
        return {"id": refund.id, "status": refund.status}

    # -- connect -------------------------------------------------------------

    def create_account(self, email: str, country: str = "US") -> Dict[str, Any]:
        account = self._call(
            "account creation", stripe.Account.create,
            type="express",
            email=email,
            country=country,
            capabilities={"card_payments": {"requested": True}, "transfers": {"requested": True}},
        )
        return {"id": account.id}

    def retrieve_account(self, account_id: str) -> Dict[str, Any]:
        account = self._call("account lookup", stripe.Account.retrieve, id=account_id)
        return {
            "id": account.id,
            "charges_enabled": bool(account.charges_enabled),
            "payouts_enabled": bool(account.payouts_enabled),
            "details_submitted": bool(account.details_submitted),
        }

    def create_account_link(self, account_id: str, return_url: str, refresh_url: str) -> Dict[str, Any]:
        link = self._call(
            "onboarding link", stripe.AccountLink.create,
            account=account_id,
            return_url=return_url,
            refresh_url=refresh_url,
            type="account_onboarding",
        )
        return {"url": link.url, "expires_at": link.expires_at}

    # -- webhooks ------------------------------------------------------------

    def parse_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify a webhook's Stripe signature and decode the body.

        Unsigned events are never accepted: without a configured secret every
        webhook is refused.
        """
        if not self.webhook_secret:
            logger.error("Webhook rejected: STRIPE_WEBHOOK_SECRET is not configured")
            raise BadRequestError("Webhook secret not configured")
        if not signature:
            raise BadRequestError("Missing webhook signature")
        try:
            stripe.Webhook.construct_event(payload=payload, sig_header=signature,
                                           secret=self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook signature verification failed: %s", exc)
            raise BadRequestError("Invalid webhook signature") from exc
        except ValueError as exc:
            raise BadRequestError("Invalid webhook payload") from exc
        # construct_event has parsed the body already; keep a plain dict for the services
        event = json.loads(payload)
        if not isinstance(event, dict):
            raise BadRequestError("Invalid webhook payload")
        return event


_gateway: Optional[StripeGateway] = None


def get_gateway() -> StripeGateway:
    global _gateway
    if _gateway is None:
        _gateway = StripeGateway(config.STRIPE_SECRET_KEY, config.STRIPE_WEBHOOK_SECRET)
    return _gateway


def set_gateway(gateway: Optional[Any]) -> None:
    """Install a gateway (tests pass a fake; ``None`` rebuilds from config)."""
    global _gateway
    _gateway = gateway
