import logging
import datetime
from typing import Any, Callable, Dict, Optional

import stripe

from crm_billing_svc.exceptions import (
    AttributionGap,
    InvalidEvent,
    ProcessorLookupFailed,
    RecoverableEventError,
    UnsupportedSubscriptionStatus,
)
from crm_billing_svc.models.subscription import SubscriptionStatus, utcnow
from crm_billing_svc.stripe_integration import StripeIntegration
from crm_billing_svc.subscription_store import SubscriptionStore

PaymentFailedHook = Callable[[Dict[str, Any]], None]


def log_payment_failure(invoice: Dict[str, Any]) -> None:
    """Default payment-failure hook: leave a trace for the notification side."""
    logging.warning(
        f"Payment failed for customer {invoice.get('customer')} on invoice {invoice.get('id')} "
        f"(attempt {invoice.get('attempt_count')})"
    )


def _timestamp(value: Any) -> Optional[datetime.datetime]:
    if value in (None, "", 0):
        return None
    return datetime.datetime.fromtimestamp(int(value), tz=datetime.timezone.utc)


def _object_id(value: Any) -> Optional[str]:
    # Stripe references are either an id or the expanded object
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    """Subscription referenced by an invoice, for both old and new API shapes."""
    subscription_id = _object_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _object_id(details.get("subscription"))


class SubscriptionReconciler:
    """
    Applies Stripe subscription state to the local subscription store.

    Stripe drives every transition; this class only records them. Writes are
    unconditional (last write wins), so replaying an event is harmless while
    an out-of-order delivery overwrites newer state.
    """

    def __init__(
        self,
        store: SubscriptionStore,
        stripe_integration: StripeIntegration,
        on_payment_failed: PaymentFailedHook = log_payment_failure,
    ) -> None:
        self.store = store
        self.stripe_integration = stripe_integration
        self.on_payment_failed = on_payment_failed

    def build_record(self, subscription: Dict[str, Any], org_id: str) -> Dict[str, Any]:
        """Map a Stripe subscription object to subscription store columns."""
        status = subscription.get("status")
        try:
            status = SubscriptionStatus(status).value
        except ValueError:
            raise UnsupportedSubscriptionStatus(
                f"Subscription {subscription.get('id')} has unsupported status {status!r}"
            ) from None

        item = _first_item(subscription)
        price = item.get("price") or item.get("plan") or {}
        # Newer API versions report billing periods per item
        period_start = subscription.get("current_period_start") or item.get("current_period_start")
        period_end = subscription.get("current_period_end") or item.get("current_period_end")

        return {
            "stripe_subscription_id": subscription["id"],
            "org_id": org_id,
            "stripe_customer_id": _object_id(subscription.get("customer")),
            "stripe_price_id": _object_id(price),
            "status": status,
            "current_period_start": _timestamp(period_start),
            "current_period_end": _timestamp(period_end),
            "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
            "cancelled_at": _timestamp(subscription.get("canceled_at")),
        }

    def upsert_from_subscription(self, subscription: Dict[str, Any]) -> None:
        """
        Create or overwrite the local record of a Stripe subscription.

        :raises InvalidEvent: if the object carries no subscription id.
        :raises AttributionGap: if the metadata carries no org_id; nothing is written.
        :raises UnsupportedSubscriptionStatus: if the status is not stored locally.
        """
        subscription_id = subscription.get("id")
        if not subscription_id:
            raise InvalidEvent("Subscription object has no id")

        org_id = (subscription.get("metadata") or {}).get("org_id")
        if not org_id:
            raise AttributionGap(subscription_id)

        self.store.upsert(self.build_record(subscription, org_id))

    def mark_canceled(self, subscription: Dict[str, Any]) -> bool:
        """
        Record the cancellation of a subscription.

        :return: False when no local record exists; that is not an error.
        """
        subscription_id = subscription.get("id")
        if not subscription_id:
            raise InvalidEvent("Subscription object has no id")

        updated = self.store.mark_canceled(subscription_id, utcnow())
        if not updated:
            logging.info(f"Subscription {subscription_id} not found while recording cancellation. No action taken.")
            return False
        logging.info(f"Subscription {subscription_id} set to canceled.")
        return True

    def reconcile_from_invoice(self, invoice: Dict[str, Any], best_effort: bool = False) -> int:
        """
        Refresh the subscriptions behind an invoice from the Stripe API.

        Invoices referencing a subscription reconcile that subscription. Some
        invoice payloads omit the reference; then every active subscription of
        the invoice's customer is reconciled instead.

        :param best_effort: acknowledge Stripe read failures on the direct path too.
        :return: The number of subscriptions reconciled.
        :raises ProcessorLookupFailed: if a Stripe read fails and is acknowledged.
        """
        subscription_id = invoice_subscription_id(invoice)
        if subscription_id:
            try:
                subscription = self.stripe_integration.retrieve_subscription(subscription_id)
            except stripe.StripeError as e:
                if not best_effort:
                    raise
                raise ProcessorLookupFailed(f"Could not retrieve subscription {subscription_id}: {e}") from e
            self.upsert_from_subscription(subscription)
            return 1

        customer_id = _object_id(invoice.get("customer"))
        if not customer_id:
            logging.info(f"Invoice {invoice.get('id')} references neither a subscription nor a customer. No action taken.")
            return 0

        try:
            subscriptions = self.stripe_integration.list_active_subscriptions(customer_id)
        except stripe.StripeError as e:
            raise ProcessorLookupFailed(
                f"Could not list subscriptions of customer {customer_id} for invoice {invoice.get('id')}: {e}"
            ) from e

        if not subscriptions:
            logging.info(f"No active subscriptions for customer {customer_id} on invoice {invoice.get('id')}.")
        reconciled = 0
        for subscription in subscriptions:
            try:
                self.upsert_from_subscription(subscription)
            except RecoverableEventError as e:
                # One unattributable subscription must not block its siblings
                logging.error(f"Skipping subscription {subscription.get('id')} of customer {customer_id}: {e}")
                continue
            reconciled += 1
        return reconciled

    def handle_payment_failed(self, invoice: Dict[str, Any]) -> None:
        """Best-effort refresh of the invoice's subscriptions, then notify."""
        try:
            self.reconcile_from_invoice(invoice, best_effort=True)
        finally:
            self.on_payment_failed(invoice)
