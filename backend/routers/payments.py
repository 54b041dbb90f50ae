"""
Payment Endpoints
POST /api/payments/create-intent                 - client starts a payment (public)
POST /api/payments/webhook                       - Stripe events (public, signed)
GET  /api/payments/proposal/{id}/summary         - totals, deposit and balance
GET  /api/payments/proposal/{id}                 - payment history
POST /api/payments/{payment_id}/refund           - refund a succeeded payment
POST /api/payments/connect/create                - open a Connect account
GET  /api/payments/connect/link                  - onboarding link
GET  /api/payments/connect/status                - sync Connect status
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Query, Request

from backend.api.schemas import ConnectAccountRequest, CreatePaymentIntentRequest, RefundRequest
from backend.auth import require_user
from backend.database import get_db, row_to_dict
from backend.domain.enums import RealtimeEvent
from backend.payment_gateway import get_gateway
from backend.services import payments as payment_service
from backend.services.serializers import rows
from backend.websocket import manager

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post("/create-intent")
async def create_payment_intent(body: CreatePaymentIntentRequest):
    def _sync():
        db = get_db()
        try:
            return payment_service.create_payment_intent(db, body.model_dump()).to_dict()
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/webhook")
async def stripe_webhook(request: Request):
    payload = await request.body()
    event = get_gateway().parse_event(payload, request.headers.get("stripe-signature"))

    def _sync():
        db = get_db()
        try:
            return payment_service.handle_webhook_event(db, event)
        finally:
            db.close()

    push = await asyncio.to_thread(_sync)
    if push:
        await manager.send_to_user(push["user_id"], RealtimeEvent.PAYMENT_RECEIVED.value, push["payload"])
    return {"received": True}


@router.get("/proposal/{proposal_id}/summary")
async def payment_summary(proposal_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return payment_service.payment_summary(db, user.user_id, proposal_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/proposal/{proposal_id}")
async def proposal_payments(proposal_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return {"payments": rows(payment_service.list_payments(db, user.user_id, proposal_id))}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/connect/create")
async def create_connect_account(request: Request, body: Optional[ConnectAccountRequest] = None):
    user = require_user(request)
    country = body.country if body else "US"

    def _sync():
        db = get_db()
        try:
            return payment_service.create_connect_account(db, user.user_id, country)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/connect/link")
async def connect_link(
    request: Request,
    return_url: Optional[str] = Query(default=None, alias="returnUrl"),
    refresh_url: Optional[str] = Query(default=None, alias="refreshUrl"),
):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return payment_service.create_connect_link(db, user.user_id, return_url, refresh_url)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/connect/status")
async def connect_status(request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return payment_service.connect_status(db, user.user_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/{payment_id}/refund")
async def refund_payment(payment_id: str, request: Request, body: Optional[RefundRequest] = None):
    user = require_user(request)
    reason = body.reason if body else None

    def _sync():
        db = get_db()
        try:
            return row_to_dict(payment_service.refund_payment(db, payment_id, user.user_id, reason))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
