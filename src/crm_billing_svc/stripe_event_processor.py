import logging
from typing import Any, Dict

from crm_billing_svc.exceptions import InvalidEvent, RecoverableEventError
from crm_billing_svc.subscription_reconciler import SubscriptionReconciler

# Acknowledged without touching local state
ACKNOWLEDGED_ONLY_EVENTS = frozenset({
    'checkout.session.completed',
    'customer.subscription.trial_will_end',
    'invoice.upcoming',
})


def process_event(event: Dict[str, Any], reconciler: SubscriptionReconciler) -> None:
    """
    Dispatch a verified Stripe event to the reconciler.

    Recoverable errors are logged and swallowed so the event is acknowledged.
    Any other error propagates and fails the webhook delivery.

    :param event: Dictionary representing the Stripe event payload.
    :param reconciler: The reconciler applying subscription state.
    :raises InvalidEvent: if the event has no type.
    """
    event_type = event.get('type')
    if not event_type:
        error_msg = "Missing 'type' in event payload"
        logging.error(error_msg)
        raise InvalidEvent(error_msg)

    event_id = event.get('id', 'N/A')
    data_object = (event.get('data') or {}).get('object') or {}
    logging.info(f"Processing event {event_id}: {event_type}")

    try:
        if event_type in ('customer.subscription.created', 'customer.subscription.updated'):
            reconciler.upsert_from_subscription(data_object)

        elif event_type == 'customer.subscription.deleted':
            reconciler.mark_canceled(data_object)

        elif event_type == 'invoice.payment_succeeded':
            reconciler.reconcile_from_invoice(data_object)

        elif event_type == 'invoice.payment_failed':
            reconciler.handle_payment_failed(data_object)

        elif event_type in ACKNOWLEDGED_ONLY_EVENTS:
            logging.info(f"Event {event_id}: {event_type} acknowledged. No action taken.")

        else:
            logging.info(f"Unhandled event type: {event_type} for event {event_id}. No action taken.")

    except RecoverableEventError as e:
        logging.error(f"Event {event_id} ({event_type}) acknowledged without being applied: {e}")
