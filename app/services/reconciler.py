"""
Subscription state reconciler - Stripe webhook handlers.

Each handler re-derives truth from current state (the subscription as Stripe
reports it now, the referral edges as stored now) instead of applying the
event payload as a delta, so duplicate and out-of-order deliveries converge.
Every write is an absolute set; the enrollment fee goes through the ledger.

Missing local state (an event for a student or subscription we do not know
yet) is logged and ignored. Stripe and database errors propagate so the
webhook endpoint answers 500 and Stripe redelivers.
"""

import logging
import uuid as uuid_pkg
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.config.pricing import FREE_SUBSCRIPTION_ID, get_pricing
from app.domain.billing_event_operations import billing_event_ops
from app.domain.referral_operations import referral_ops
from app.domain.student_operations import student_ops
from app.models.billing import BillingEventType
from app.models.referral import ReferralStatus
from app.models.student import Student, StudentSubscriptionStatus
from app.services.discounts import calculate_discount, discounted_price
from app.services.enrollment_fee import charge_enrollment_fee_once, reset_enrollment_fee_flag
from app.services.stripe_service import StripeService, resolve_invoice_subscription_id

logger = logging.getLogger(__name__)


@dataclass
class WebhookContext:
    """Handles a reconciliation step needs. Nothing is read from globals."""

    db: AsyncSession
    stripe: StripeService
    event_id: str | None = None


EventHandler = Callable[[WebhookContext, dict[str, Any]], Awaitable[None]]


STRIPE_STATUS_MAP: dict[str, StudentSubscriptionStatus] = {
    "trialing": StudentSubscriptionStatus.TRIAL,
    "active": StudentSubscriptionStatus.ACTIVE,
    "past_due": StudentSubscriptionStatus.PAST_DUE,
    "unpaid": StudentSubscriptionStatus.PAST_DUE,
    "canceled": StudentSubscriptionStatus.CANCELLED,
    "incomplete_expired": StudentSubscriptionStatus.CANCELLED,
}


def map_stripe_status(stripe_status: str | None) -> str | None:
    """Local status for a Stripe subscription status, None if unmapped."""
    if not stripe_status:
        return None
    mapped = STRIPE_STATUS_MAP.get(stripe_status)
    return mapped.value if mapped else None


def edge_status_for(student_status: str) -> str:
    """Referral edge status mirroring the referred student's status."""
    if student_status == StudentSubscriptionStatus.ACTIVE.value:
        return ReferralStatus.ACTIVE.value
    if student_status == StudentSubscriptionStatus.CANCELLED.value:
        return ReferralStatus.CANCELLED.value
    return ReferralStatus.TRIAL.value


def _object_id(value: Any) -> str | None:
    """ID from a Stripe field that may be an ID string or an expanded object."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id")
    return None


def _from_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), UTC)


def _parse_uuid(value: Any) -> uuid_pkg.UUID | None:
    if not value:
        return None
    try:
        return uuid_pkg.UUID(str(value))
    except ValueError:
        return None


def _metadata_int(metadata: dict[str, Any], key: str, default: int) -> int:
    raw = metadata.get(key)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-integer metadata {key}={raw!r}")
        return default


async def _student_for_subscription(
    ctx: WebhookContext,
    subscription_id: str | None,
) -> Student | None:
    if not subscription_id:
        logger.warning("No subscription ID in event payload")
        return None
    student = await student_ops.get_by_stripe_subscription(ctx.db, subscription_id)
    if not student:
        logger.warning(f"No student found for subscription {subscription_id}")
    return student


# ─────────────────────────────────────────────────────────────────────────────
# Discount push
# ─────────────────────────────────────────────────────────────────────────────


async def sync_student_discount(ctx: WebhookContext, student: Student) -> int | None:
    """
    Bring a student's subscription discount in line with their referrals.

    Recomputes the percent from the current active-edge count, compares it
    with the coupon Stripe has attached, and swaps the coupon if they differ.
    The recomputed monthly price is always stored locally.

    Returns the target percent, or None when there is no real Stripe
    subscription to correct (none yet, cancelled, or the free sentinel).
    """
    subscription_id = student.stripe_subscription_id
    if not subscription_id or subscription_id == FREE_SUBSCRIPTION_ID:
        logger.info(f"Student {student.id} has no Stripe subscription, skipping discount sync")
        return None
    if student.subscription_status == StudentSubscriptionStatus.CANCELLED.value:
        return None

    pricing = get_pricing()
    active_count = await referral_ops.count_active(ctx.db, student.id)
    percent = calculate_discount(active_count)

    subscription = ctx.stripe.get_subscription(subscription_id)
    if subscription is None:
        return None

    current = ctx.stripe.get_discount_percent(subscription)
    if current != percent:
        logger.info(
            f"Student {student.id}: {active_count} active referrals, "
            f"discount {current}% -> {percent}%"
        )
        if ctx.stripe.has_discount(subscription):
            ctx.stripe.remove_discount(subscription_id)
        coupon_id = ctx.stripe.ensure_coupon(percent)
        if coupon_id:
            ctx.stripe.apply_coupon(subscription_id, coupon_id)
        await billing_event_ops.log_event(
            ctx.db,
            event_type=BillingEventType.DISCOUNT_CHANGED,
            student_id=student.id,
            previous_value={"discount_percent": current},
            new_value={"discount_percent": percent, "active_referrals": active_count},
            stripe_event_id=ctx.event_id,
        )

    await student_ops.update(
        ctx.db,
        student,
        {"monthly_price": discounted_price(pricing.monthly_price, percent)},
    )
    return percent


async def update_referrer_discount(ctx: WebhookContext, code: str) -> int | None:
    """Recompute and push the discount of the student who owns a referral code."""
    referral_code = await referral_ops.get_by_code(ctx.db, code)
    if not referral_code or referral_code.student is None:
        logger.warning(f"No referrer found for referral code {code}")
        return None
    return await sync_student_discount(ctx, referral_code.student)


async def _mirror_inbound_edges(ctx: WebhookContext, student: Student, status: str) -> None:
    """Set the student's inbound edges to a status and repush each referrer's discount."""
    edges = await referral_ops.get_inbound(ctx.db, student)
    if not edges:
        return
    changed = await referral_ops.set_status(ctx.db, edges, status)
    if changed:
        logger.info(f"Set {len(changed)} referral edge(s) of student {student.id} to {status}")
    for code in sorted({edge.referral_code for edge in edges}):
        await update_referrer_discount(ctx, code)


# ─────────────────────────────────────────────────────────────────────────────
# Handlers
# ─────────────────────────────────────────────────────────────────────────────


async def handle_checkout_completed(ctx: WebhookContext, session: dict[str, Any]) -> None:
    """
    Attach the new Stripe subscription to the student.

    Status and trial dates come from the subscription as Stripe reports it.
    A referral code carried in the session metadata becomes a referral edge,
    and the enrollment fee from the metadata is charged through the ledger.
    """
    student_id = _parse_uuid(session.get("client_reference_id"))
    if not student_id:
        logger.warning(f"Checkout session {session.get('id')} has no student reference")
        return

    student = await student_ops.get(ctx.db, student_id)
    if not student:
        logger.warning(f"Checkout completed for unknown student {student_id}")
        return

    subscription_id = _object_id(session.get("subscription"))
    customer_id = _object_id(session.get("customer"))
    metadata = dict(session.get("metadata") or {})

    updates: dict[str, Any] = {
        "stripe_customer_id": customer_id,
        "stripe_subscription_id": subscription_id,
        "subscription_status": StudentSubscriptionStatus.TRIAL.value,
    }
    if subscription_id:
        subscription = ctx.stripe.get_subscription(subscription_id)
        if subscription:
            updates["subscription_status"] = (
                map_stripe_status(subscription.get("status"))
                or StudentSubscriptionStatus.TRIAL.value
            )
            updates["trial_start_date"] = _from_timestamp(subscription.get("trial_start"))
            updates["trial_end_date"] = _from_timestamp(subscription.get("trial_end"))
            if not metadata:
                metadata = dict(subscription.get("metadata") or {})
    if updates["subscription_status"] == StudentSubscriptionStatus.ACTIVE.value:
        updates["subscription_start_date"] = datetime.now(UTC)

    previous_status = student.subscription_status
    student = await student_ops.update(ctx.db, student, updates)
    await billing_event_ops.log_event(
        ctx.db,
        event_type=BillingEventType.CHECKOUT_COMPLETED,
        student_id=student.id,
        previous_value={"status": previous_status},
        new_value={
            "status": student.subscription_status,
            "subscription_id": subscription_id,
            "customer_id": customer_id,
        },
        stripe_event_id=ctx.event_id,
    )
    logger.info(
        f"Checkout completed for student {student.id}: "
        f"subscription={subscription_id}, status={student.subscription_status}"
    )

    await _record_checkout_referral(ctx, student, metadata)

    if not customer_id:
        logger.warning(f"No customer on checkout session for student {student.id}, fee deferred")
        return

    pricing = get_pricing()
    await charge_enrollment_fee_once(
        ctx.db,
        ctx.stripe,
        student.id,
        customer_id,
        _metadata_int(metadata, "enrollment_fee", pricing.enrollment_fee),
        currency=pricing.currency,
        stripe_event_id=ctx.event_id,
    )


async def _record_checkout_referral(
    ctx: WebhookContext,
    student: Student,
    metadata: dict[str, Any],
) -> None:
    referrer_id = _parse_uuid(metadata.get("referrer_student_id"))
    if not referrer_id:
        return

    code = metadata.get("referral_code")
    if not code:
        referral_code = await referral_ops.get_code_for_student(ctx.db, referrer_id)
        if not referral_code:
            logger.warning(f"Referrer {referrer_id} has no referral code, no edge recorded")
            return
        code = referral_code.code

    referred_user_id = _parse_uuid(metadata.get("user_id")) or student.parent_id
    edge = await referral_ops.ensure_edge_for_checkout(
        ctx.db,
        code=code,
        referrer_student_id=referrer_id,
        referred_user_id=referred_user_id,
        referred_student_id=student.id,
        status=edge_status_for(student.subscription_status),
    )
    if edge is None:
        return

    await billing_event_ops.log_event(
        ctx.db,
        event_type=BillingEventType.REFERRAL_RECORDED,
        student_id=student.id,
        new_value={"referral_id": str(edge.id), "code": edge.referral_code, "status": edge.status},
        stripe_event_id=ctx.event_id,
    )
    await update_referrer_discount(ctx, edge.referral_code)


async def handle_subscription_changed(ctx: WebhookContext, subscription: dict[str, Any]) -> None:
    """
    Mirror a created/updated subscription's status onto the student.

    A subscription scheduled to cancel gets its pending one-time items
    removed so no enrollment fee is left for a cycle that will not bill.
    """
    student = await _student_for_subscription(ctx, subscription.get("id"))
    if not student:
        return

    new_status = map_stripe_status(subscription.get("status"))
    if new_status is None:
        logger.info(
            f"Unmapped subscription status {subscription.get('status')!r} "
            f"for student {student.id}, leaving status unchanged"
        )
    elif new_status != student.subscription_status:
        previous_status = student.subscription_status
        await student_ops.update(ctx.db, student, {"subscription_status": new_status})
        await billing_event_ops.log_event(
            ctx.db,
            event_type=BillingEventType.SUBSCRIPTION_UPDATED,
            student_id=student.id,
            previous_value={"status": previous_status},
            new_value={"status": new_status},
            stripe_event_id=ctx.event_id,
        )

    if subscription.get("cancel_at") or subscription.get("cancel_at_period_end"):
        customer_id = student.stripe_customer_id or _object_id(subscription.get("customer"))
        if customer_id:
            removed = ctx.stripe.delete_pending_invoice_items(customer_id)
            if removed:
                await billing_event_ops.log_event(
                    ctx.db,
                    event_type=BillingEventType.PENDING_ITEMS_REMOVED,
                    student_id=student.id,
                    new_value={"removed": removed},
                    stripe_event_id=ctx.event_id,
                    description="Subscription scheduled to cancel",
                )


async def handle_subscription_deleted(ctx: WebhookContext, subscription: dict[str, Any]) -> None:
    """
    Cancel the student and unwind what their subscription contributed.

    The enrollment fee flag is reset for a future re-enrollment, leftover
    pending items are deleted, the student's inbound edges are cancelled and
    each referrer's discount is recomputed.
    """
    student = await _student_for_subscription(ctx, subscription.get("id"))
    if not student:
        return

    previous_status = student.subscription_status
    await student_ops.update(
        ctx.db,
        student,
        {"subscription_status": StudentSubscriptionStatus.CANCELLED.value},
    )
    await reset_enrollment_fee_flag(ctx.db, student)

    if student.stripe_customer_id:
        ctx.stripe.delete_pending_invoice_items(student.stripe_customer_id)

    await billing_event_ops.log_event(
        ctx.db,
        event_type=BillingEventType.SUBSCRIPTION_CANCELED,
        student_id=student.id,
        previous_value={"status": previous_status},
        new_value={"status": StudentSubscriptionStatus.CANCELLED.value},
        stripe_event_id=ctx.event_id,
    )
    logger.info(f"Subscription {subscription.get('id')} deleted, student {student.id} cancelled")

    await _mirror_inbound_edges(ctx, student, ReferralStatus.CANCELLED.value)

    if settings.cancel_outbound_referrals_on_cancel:
        outbound = await referral_ops.get_outbound(ctx.db, student.id)
        changed = await referral_ops.set_status(ctx.db, outbound, ReferralStatus.CANCELLED.value)
        if changed:
            logger.info(f"Cancelled {len(changed)} referral(s) made by student {student.id}")


async def handle_payment_succeeded(ctx: WebhookContext, invoice: dict[str, Any]) -> None:
    """Mark the student active, activate their inbound edges and repush referrer discounts."""
    # The $0 invoice Stripe issues when a trial starts is not a payment
    if invoice.get("billing_reason") == "subscription_create" and invoice.get("amount_paid") == 0:
        logger.info(f"Ignoring zero-amount trial invoice {invoice.get('id')}")
        return

    student = await _student_for_subscription(ctx, resolve_invoice_subscription_id(invoice))
    if not student:
        return

    previous_status = student.subscription_status
    updates: dict[str, Any] = {"subscription_status": StudentSubscriptionStatus.ACTIVE.value}
    if previous_status not in (
        StudentSubscriptionStatus.ACTIVE.value,
        StudentSubscriptionStatus.PAST_DUE.value,
    ):
        updates["subscription_start_date"] = datetime.now(UTC)
    await student_ops.update(ctx.db, student, updates)

    await billing_event_ops.log_event(
        ctx.db,
        event_type=BillingEventType.PAYMENT_SUCCEEDED,
        student_id=student.id,
        previous_value={"status": previous_status},
        new_value={"status": StudentSubscriptionStatus.ACTIVE.value, "invoice_id": invoice.get("id")},
        stripe_event_id=ctx.event_id,
    )

    await _mirror_inbound_edges(ctx, student, ReferralStatus.ACTIVE.value)


async def handle_payment_failed(ctx: WebhookContext, invoice: dict[str, Any]) -> None:
    student = await _student_for_subscription(ctx, resolve_invoice_subscription_id(invoice))
    if not student:
        return

    previous_status = student.subscription_status
    await student_ops.update(
        ctx.db,
        student,
        {"subscription_status": StudentSubscriptionStatus.PAST_DUE.value},
    )
    await billing_event_ops.log_event(
        ctx.db,
        event_type=BillingEventType.PAYMENT_FAILED,
        student_id=student.id,
        previous_value={"status": previous_status},
        new_value={"status": StudentSubscriptionStatus.PAST_DUE.value, "invoice_id": invoice.get("id")},
        stripe_event_id=ctx.event_id,
    )
    logger.warning(f"Payment failed for student {student.id}, invoice {invoice.get('id')}")


async def handle_invoice_upcoming(ctx: WebhookContext, invoice: dict[str, Any]) -> None:
    """Correct the discount before Stripe finalizes the next invoice."""
    student = await _student_for_subscription(ctx, resolve_invoice_subscription_id(invoice))
    if not student:
        return
    await sync_student_discount(ctx, student)


async def handle_invoice_created(ctx: WebhookContext, invoice: dict[str, Any]) -> None:
    """
    Attach a still-uncharged enrollment fee to a renewal draft invoice.

    Covers students whose fee could not be added at checkout. The ledger
    guarantees the fee is still charged at most once.
    """
    if invoice.get("billing_reason") != "subscription_cycle" or invoice.get("status") != "draft":
        return

    subscription_id = resolve_invoice_subscription_id(invoice)
    student = await _student_for_subscription(ctx, subscription_id)
    if not student or student.enrollment_fee_charged:
        return

    customer_id = _object_id(invoice.get("customer")) or student.stripe_customer_id
    if not customer_id:
        logger.warning(f"Invoice {invoice.get('id')} has no customer, cannot add enrollment fee")
        return

    pricing = get_pricing()
    subscription = ctx.stripe.get_subscription(subscription_id) if subscription_id else None
    metadata = dict((subscription or {}).get("metadata") or {})

    await charge_enrollment_fee_once(
        ctx.db,
        ctx.stripe,
        student.id,
        customer_id,
        _metadata_int(metadata, "enrollment_fee", pricing.enrollment_fee),
        currency=pricing.currency,
        invoice_id=invoice.get("id"),
        stripe_event_id=ctx.event_id,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Dispatch
# ─────────────────────────────────────────────────────────────────────────────

WEBHOOK_HANDLERS: dict[str, EventHandler] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_changed,
    "customer.subscription.updated": handle_subscription_changed,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_payment_succeeded,
    "invoice.payment_failed": handle_payment_failed,
    "invoice.upcoming": handle_invoice_upcoming,
    "invoice.created": handle_invoice_created,
}


async def handle_event(ctx: WebhookContext, event: dict[str, Any]) -> bool:
    """
    Route a verified Stripe event to its handler.

    Returns False for event types with no handler (acknowledged and ignored).
    """
    event_type = event.get("type", "")
    handler = WEBHOOK_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled Stripe event type: {event_type}")
        return False

    data_object = dict(event.get("data", {}).get("object", {}))
    logger.info(f"Handling Stripe event {event.get('id')} ({event_type})")
    await handler(ctx, data_object)
    return True
