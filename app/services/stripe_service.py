"""Stripe payment service for tuition subscriptions, coupons and invoice items."""

import logging
from typing import Any

import stripe
from stripe import InvalidRequestError, SignatureVerificationError, StripeError

from app.config import settings

logger = logging.getLogger(__name__)


def coupon_id_for(percent: int) -> str:
    """Deterministic coupon ID for a referral discount percentage."""
    return f"referral_{percent}off"


def resolve_invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    """
    Find the subscription an invoice belongs to.

    Stripe has moved this field between API versions. Checked in order:
    1. invoice.parent.subscription_details.subscription (2025+ API)
    2. invoice.subscription as an ID string (legacy API)
    3. invoice.subscription.id when the subscription was expanded
    """
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    nested = details.get("subscription")
    if isinstance(nested, str) and nested:
        return nested
    if isinstance(nested, dict) and nested.get("id"):
        return str(nested["id"])

    flat = invoice.get("subscription")
    if isinstance(flat, str) and flat:
        return flat
    if isinstance(flat, dict) and flat.get("id"):
        return str(flat["id"])

    return None


class StripeService:
    """
    Handles all Stripe API interactions.

    Constructed explicitly with its credentials and passed to each request
    and webhook handler; the module-level stripe.api_key is never set.
    Every call passes api_key per request. Stripe SDK handles connection pooling.

    Objects read back from Stripe leave this class as plain dicts
    (StripeObject.to_dict()), so handlers never depend on SDK types.
    """

    def __init__(self, api_key: str, webhook_secret: str = "") -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    # ─────────────────────────────────────────────────────────────────────────
    # Webhooks
    # ─────────────────────────────────────────────────────────────────────────

    def construct_webhook_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify and construct a webhook event from Stripe.

        Raises ValueError if signature verification fails.
        """
        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload,
                signature,
                self.webhook_secret,
            )
            return event.to_dict()
        except SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise ValueError("Invalid webhook signature") from None
        except ValueError as e:
            logger.warning(f"Invalid webhook payload: {e}")
            raise ValueError("Invalid webhook payload") from None

    # ─────────────────────────────────────────────────────────────────────────
    # Checkout & Portal
    # ─────────────────────────────────────────────────────────────────────────

    def get_monthly_price_id(
        self,
        amount_cents: int,
        currency: str,
        product_name: str,
        product_description: str,
    ) -> str:
        """
        Get the recurring monthly price, creating product and price if needed.

        Uses the configured price ID when set. Otherwise reuses any active
        monthly price with the same amount and currency.
        """
        if settings.stripe_monthly_price_id:
            return settings.stripe_monthly_price_id

        try:
            prices = stripe.Price.list(active=True, limit=100, api_key=self.api_key)
            for price in (p.to_dict() for p in prices.data):
                recurring = price.get("recurring") or {}
                if (
                    price.get("unit_amount") == amount_cents
                    and price.get("currency") == currency
                    and recurring.get("interval") == "month"
                ):
                    return str(price["id"])

            product = stripe.Product.create(
                name=product_name,
                description=product_description,
                api_key=self.api_key,
            )
            price = stripe.Price.create(
                product=product.id,
                unit_amount=amount_cents,
                currency=currency,
                recurring={"interval": "month"},
                api_key=self.api_key,
            )
            logger.info(f"Created monthly price {price.id} ({amount_cents} {currency})")
            return str(price.id)
        except StripeError as e:
            logger.error(f"Failed to resolve monthly price: {e}")
            raise

    def create_checkout_session(
        self,
        *,
        price_id: str,
        customer_email: str | None,
        client_reference_id: str,
        success_url: str,
        cancel_url: str,
        trial_period_days: int,
        metadata: dict[str, str],
        coupon_id: str | None = None,
    ) -> str:
        """
        Create a subscription Checkout session.

        The metadata is attached to both the session and the subscription:
        it is the only channel that carries checkout-time decisions to the
        webhook handlers. Returns the checkout session URL.
        """
        params: dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "client_reference_id": client_reference_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "subscription_data": {
                "trial_period_days": trial_period_days,
                "metadata": metadata,
            },
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_email:
            params["customer_email"] = customer_email
        if coupon_id:
            params["discounts"] = [{"coupon": coupon_id}]

        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
            logger.info(
                f"Created checkout session {session.id} for student {client_reference_id}, "
                f"coupon={coupon_id}"
            )
            return session.url or ""
        except StripeError as e:
            logger.error(f"Failed to create checkout session: {e}")
            raise

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a Stripe Customer Portal session for self-service billing.

        Returns the portal session URL.
        """
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                api_key=self.api_key,
            )
            return session.url
        except StripeError as e:
            logger.error(f"Failed to create portal session: {e}")
            raise

    # ─────────────────────────────────────────────────────────────────────────
    # Coupons & Subscription Discounts
    # ─────────────────────────────────────────────────────────────────────────

    def ensure_coupon(self, percent: int) -> str | None:
        """
        Get or create the forever coupon for a discount percentage.

        Returns None for percent <= 0 (nothing to represent). Two callers
        racing to create the same coupon both end up with the same ID.
        Any other Stripe error propagates.
        """
        if percent <= 0:
            return None

        coupon_id = coupon_id_for(percent)
        try:
            stripe.Coupon.retrieve(coupon_id, api_key=self.api_key)
            return coupon_id
        except InvalidRequestError as e:
            if e.code != "resource_missing":
                raise

        try:
            coupon = stripe.Coupon.create(
                id=coupon_id,  # Idempotent ID
                percent_off=percent,
                duration="forever",
                name=f"Referral {percent}% OFF",
                metadata={"type": "referral"},
                api_key=self.api_key,
            )
            logger.info(f"Created referral coupon: {coupon.id}")
            return str(coupon.id)
        except InvalidRequestError as e:
            # Lost a creation race - the coupon now exists with that ID
            if e.code == "resource_already_exists" or "already exists" in str(e).lower():
                return coupon_id
            logger.error(f"Failed to create referral coupon {coupon_id}: {e}")
            raise

    def get_subscription(self, stripe_subscription_id: str) -> dict[str, Any] | None:
        """
        Retrieve a Stripe subscription by ID, with discounts expanded.

        Returns None if Stripe has no such subscription; other errors propagate.
        """
        try:
            sub = stripe.Subscription.retrieve(
                stripe_subscription_id,
                expand=["discounts"],
                api_key=self.api_key,
            )
            return sub.to_dict()
        except InvalidRequestError as e:
            if e.code == "resource_missing":
                logger.warning(f"Stripe subscription {stripe_subscription_id} not found")
                return None
            raise

    def get_discount_percent(self, subscription: dict[str, Any]) -> int:
        """Percent off currently applied to a subscription (0 if none)."""
        coupon: Any = None

        legacy = subscription.get("discount")
        if legacy:
            coupon = legacy.get("coupon")
        else:
            # Expanded by get_subscription; bare IDs carry no coupon to read
            for discount in subscription.get("discounts") or []:
                if isinstance(discount, str):
                    continue
                source = discount.get("source") or {}
                coupon = discount.get("coupon") or source.get("coupon")
                if coupon:
                    break

        if isinstance(coupon, str):
            coupon = stripe.Coupon.retrieve(coupon, api_key=self.api_key).to_dict()
        if not coupon:
            return 0
        return int(coupon.get("percent_off") or 0)

    def has_discount(self, subscription: dict[str, Any]) -> bool:
        return bool(subscription.get("discount") or subscription.get("discounts"))

    def remove_discount(self, stripe_subscription_id: str) -> None:
        """Remove the discount currently applied to a subscription."""
        try:
            stripe.Subscription.delete_discount(stripe_subscription_id, api_key=self.api_key)
            logger.info(f"Removed discount from subscription {stripe_subscription_id}")
        except StripeError as e:
            logger.error(f"Failed to remove subscription discount: {e}")
            raise

    def apply_coupon(self, stripe_subscription_id: str, coupon_id: str) -> None:
        """Apply a coupon to an existing subscription."""
        try:
            stripe.Subscription.modify(
                stripe_subscription_id,
                discounts=[{"coupon": coupon_id}],
                api_key=self.api_key,
            )
            logger.info(f"Applied coupon {coupon_id} to subscription {stripe_subscription_id}")
        except StripeError as e:
            logger.error(f"Failed to apply coupon to subscription: {e}")
            raise

    # ─────────────────────────────────────────────────────────────────────────
    # Invoice Items (one-time charges)
    # ─────────────────────────────────────────────────────────────────────────

    def list_pending_invoice_items(self, customer_id: str) -> list[dict[str, Any]]:
        """List a customer's invoice items not yet attached to an invoice."""
        items = stripe.InvoiceItem.list(
            customer=customer_id,
            pending=True,
            limit=100,
            api_key=self.api_key,
        )
        return [item.to_dict() for item in items.data]

    def create_invoice_item(
        self,
        *,
        customer_id: str,
        amount_cents: int,
        currency: str,
        description: str,
        invoice_id: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """
        Create a one-time invoice item.

        Without invoice_id it stays pending and is picked up by the
        customer's next invoice; with it, it is attached to that draft.
        """
        params: dict[str, Any] = {
            "customer": customer_id,
            "amount": amount_cents,
            "currency": currency,
            "description": description,
            "metadata": metadata or {},
        }
        if invoice_id:
            params["invoice"] = invoice_id

        item = stripe.InvoiceItem.create(api_key=self.api_key, **params)
        logger.info(
            f"Created invoice item {item.id} for customer {customer_id}: "
            f"{amount_cents} {currency} ({description})"
        )
        return str(item.id)

    def delete_pending_invoice_items(self, customer_id: str) -> int:
        """
        Delete all pending invoice items for a customer.

        Returns the number of items deleted.
        """
        deleted = 0
        for item in self.list_pending_invoice_items(customer_id):
            stripe.InvoiceItem.delete(item["id"], api_key=self.api_key)
            deleted += 1
        if deleted:
            logger.info(f"Deleted {deleted} pending invoice item(s) for customer {customer_id}")
        return deleted


def build_stripe_service() -> StripeService:
    """Stripe client built from current settings."""
    return StripeService(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
    )
