"""
Subscription webhook endpoint.

Signatures are verified with the `stripe` library when STRIPE_WEBHOOK_SECRET
is set. A replayed event answers 200 so the provider stops retrying; an
event we cannot apply answers 4xx/5xx so it retries later.
"""

import json

import stripe
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.core.config import get_settings
from racestay.core.exceptions import ExternalEventReplay, InvalidWebhookEvent
from racestay.core.logging import get_logger
from racestay.core.metrics import record_webhook_event
from racestay.db.session import get_db
from racestay.schemas.webhook import SubscriptionEvent, WebhookResult
from racestay.services import subscription_service

logger = get_logger(__name__)
settings = get_settings()
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def parse_payload(payload: bytes, signature: str | None) -> dict:
    if settings.STRIPE_WEBHOOK_SECRET:
        try:
            stripe.Webhook.construct_event(
                payload,
                signature or "",
                settings.STRIPE_WEBHOOK_SECRET,
                tolerance=settings.STRIPE_WEBHOOK_TOLERANCE,
            )
        except stripe.SignatureVerificationError:
            logger.warning("webhook_signature_invalid")
            raise InvalidWebhookEvent("Invalid webhook signature")
        except ValueError:
            raise InvalidWebhookEvent("Malformed webhook payload")
    try:
        data = json.loads(payload)
    except ValueError:
        raise InvalidWebhookEvent("Malformed webhook payload")
    if not isinstance(data, dict):
        raise InvalidWebhookEvent("Malformed webhook payload")
    return data


@router.post("/subscriptions", response_model=WebhookResult)
async def subscription_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
):
    payload = await request.body()
    data = parse_payload(payload, stripe_signature)

    event = SubscriptionEvent.from_stripe(data)
    if event is None:
        record_webhook_event(data.get("type") or "unknown", "ignored")
        logger.info("webhook_event_unhandled", provider_type=data.get("type"))
        return WebhookResult(status="ignored")

    try:
        return await subscription_service.handle_event(db, event)
    except ExternalEventReplay:
        return WebhookResult(status="replay", kind=event.kind, dedup_key=subscription_service.dedup_key(event))
