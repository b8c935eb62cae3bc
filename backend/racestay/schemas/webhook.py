"""
Subscription webhook events.

Stripe payloads are normalized into a SubscriptionEvent so the
reconciliation handler never deals with provider field names. Unknown event
types normalize to None; unknown fields are ignored.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from pydantic import BaseModel, Field

CREATED = "created"
INITIAL_PAYMENT = "initial_payment"
RENEWED = "renewed"
UPDATED = "updated"
DELETED = "deleted"

EVENT_KINDS = (CREATED, INITIAL_PAYMENT, RENEWED, UPDATED, DELETED)


class SubscriptionEvent(BaseModel):
    kind: str
    event_id: Optional[str] = None
    provider_type: Optional[str] = None
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    status: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    amount: Optional[int] = None
    currency: Optional[str] = None
    invoice_id: Optional[str] = None

    @property
    def user_id(self) -> Optional[int]:
        raw = self.metadata.get("user_id") or self.metadata.get("userId")
        try:
            return int(raw) if raw else None
        except ValueError:
            return None

    @property
    def wants_new_account(self) -> bool:
        flag = self.metadata.get("create_account") or self.metadata.get("createAccount") or ""
        return flag.lower() == "true"

    @property
    def plan_type(self) -> Optional[str]:
        return self.metadata.get("plan_type") or self.metadata.get("planType")

    @classmethod
    def from_stripe(cls, payload: dict[str, Any]) -> Optional["SubscriptionEvent"]:
        event_type = payload.get("type") or ""
        obj = (payload.get("data") or {}).get("object") or {}
        common = {"event_id": payload.get("id"), "provider_type": event_type}

        if event_type == "checkout.session.completed":
            if obj.get("mode") not in (None, "subscription"):
                return None
            return cls(
                kind=CREATED,
                subscription_id=_id(obj.get("subscription")),
                customer_id=_id(obj.get("customer")),
                metadata=_metadata(obj.get("metadata")),
                status="active",
                amount=obj.get("amount_total"),
                currency=obj.get("currency"),
                **common,
            )

        if event_type == "invoice.payment_succeeded":
            reason = obj.get("billing_reason")
            if reason == "subscription_cycle":
                kind = RENEWED
            elif reason == "subscription_create":
                kind = INITIAL_PAYMENT
            else:
                return None
            period_start, period_end = _invoice_period(obj)
            return cls(
                kind=kind,
                subscription_id=_invoice_subscription(obj),
                customer_id=_id(obj.get("customer")),
                metadata=_invoice_metadata(obj),
                status="active",
                period_start=period_start,
                period_end=period_end,
                amount=obj.get("amount_paid"),
                currency=obj.get("currency"),
                invoice_id=obj.get("id"),
                **common,
            )

        if event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
            period_start, period_end = _subscription_period(obj)
            return cls(
                kind=UPDATED if event_type.endswith("updated") else DELETED,
                subscription_id=obj.get("id"),
                customer_id=_id(obj.get("customer")),
                metadata=_metadata(obj.get("metadata")),
                status=map_stripe_status(obj.get("status")),
                period_start=period_start,
                period_end=period_end,
                cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
                **common,
            )

        return None


def map_stripe_status(status: Optional[str]) -> str:
    if status in ("active", "trialing"):
        return "active"
    if status == "canceled":
        return "canceled"
    if status == "past_due":
        return "past_due"
    return "inactive"


def _id(value: Any) -> Optional[str]:
    # Expanded objects carry the id inside
    if isinstance(value, dict):
        return value.get("id")
    return value


def _metadata(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if v is not None}


def _ts(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _invoice_subscription(obj: dict) -> Optional[str]:
    if obj.get("subscription"):
        return _id(obj["subscription"])
    details = ((obj.get("parent") or {}).get("subscription_details")) or {}
    return _id(details.get("subscription"))


def _invoice_metadata(obj: dict) -> dict[str, str]:
    details = obj.get("subscription_details") or ((obj.get("parent") or {}).get("subscription_details")) or {}
    merged = _metadata(obj.get("metadata"))
    merged.update(_metadata(details.get("metadata")))
    return merged


def _invoice_period(obj: dict) -> tuple[Optional[datetime], Optional[datetime]]:
    lines = ((obj.get("lines") or {}).get("data")) or []
    for line in lines:
        period = line.get("period") or {}
        if period.get("end"):
            return _ts(period.get("start")), _ts(period.get("end"))
    return _ts(obj.get("period_start")), _ts(obj.get("period_end"))


def _subscription_period(obj: dict) -> tuple[Optional[datetime], Optional[datetime]]:
    if obj.get("current_period_end"):
        return _ts(obj.get("current_period_start")), _ts(obj.get("current_period_end"))
    items = ((obj.get("items") or {}).get("data")) or []
    for item in items:
        if item.get("current_period_end"):
            return _ts(item.get("current_period_start")), _ts(item.get("current_period_end"))
    return None, None


class WebhookResult(BaseModel):
    status: str  # applied, replay, ignored
    kind: Optional[str] = None
    dedup_key: Optional[str] = None
    user_id: Optional[int] = None
