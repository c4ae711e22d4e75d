import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from crm_billing_svc.config import Settings
from crm_billing_svc.exceptions import InvalidEvent, SignatureInvalid


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


class StripeIntegration:
    """
    This class encapsulates the integration with the Stripe API: webhook
    verification, the subscription reads used during reconciliation, and the
    hosted checkout and portal sessions used by the frontend.

    The secret key is passed on every call instead of being set globally.
    Stripe errors are logged and re-raised; nothing is retried here.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.api_key = settings.stripe_secret_key

    def verify_webhook_event(self, payload: bytes, sig_header: str, endpoint_secret: str) -> Dict[str, Any]:
        """
        Verify a webhook delivery and parse its event.

        :param payload: The raw request body, exactly as received.
        :param sig_header: The Stripe-Signature header from the webhook.
        :param endpoint_secret: The webhook endpoint secret used for signature verification.
        :return: The event as a plain dictionary.
        :raises SignatureInvalid: if the signature does not match the payload.
        :raises InvalidEvent: if the signed payload is not a JSON object.
        """
        try:
            body = payload.decode('utf-8')
        except UnicodeDecodeError as e:
            raise InvalidEvent('Webhook payload is not valid UTF-8.') from e

        try:
            stripe.WebhookSignature.verify_header(
                body, sig_header, endpoint_secret, self.settings.stripe_webhook_tolerance
            )
        except stripe.SignatureVerificationError as e:
            logging.error(f'Webhook signature verification failed: {e}')
            raise SignatureInvalid('Invalid signature.') from e

        try:
            event = json.loads(body)
        except ValueError as e:
            logging.error(f'Webhook payload is not valid JSON: {e}')
            raise InvalidEvent('Invalid webhook payload.') from e
        if not isinstance(event, dict):
            raise InvalidEvent('Invalid webhook payload.')
        return event

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """
        Retrieve the current state of a subscription.

        :raises ValueError: if subscription_id is empty.
        :raises stripe.StripeError: if the Stripe API call fails.
        """
        if not subscription_id or not subscription_id.strip():
            raise ValueError("subscription_id cannot be empty")
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logging.error(f"Error retrieving subscription {subscription_id}: {e}", exc_info=True)
            raise
        return _as_dict(subscription)

    def list_active_subscriptions(self, customer_id: str) -> List[Dict[str, Any]]:
        """
        List the active subscriptions of a customer.

        :raises stripe.StripeError: if the Stripe API call fails.
        """
        try:
            subscriptions = stripe.Subscription.list(
                customer=customer_id,
                status="active",
                limit=100,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logging.error(f"Error listing subscriptions for customer {customer_id}: {e}", exc_info=True)
            raise
        return [_as_dict(subscription) for subscription in subscriptions.data]

    def create_checkout_session(
        self,
        price_id: str,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        customer_email: Optional[str] = None,
        org_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> str:
        """
        Create a hosted Checkout session for a subscription to one price.

        org_id and user_id are copied into the subscription metadata so the
        webhook pipeline can attribute the resulting subscription.

        :return: The checkout URL.
        :raises stripe.StripeError: if the Stripe API call fails.
        :raises ValueError: if Stripe returns a session without URL.
        """
        metadata = {}
        if org_id:
            metadata["org_id"] = org_id
        if user_id:
            metadata["user_id"] = user_id

        params: Dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url or f"{self.settings.frontend_url}/billing?success=true",
            "cancel_url": cancel_url or f"{self.settings.frontend_url}/billing?canceled=true",
        }
        if metadata:
            params["metadata"] = metadata
            params["subscription_data"] = {"metadata": metadata}
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logging.error(f"Error creating checkout session for price {price_id}: {e}", exc_info=True)
            raise
        if not session.url:
            raise ValueError("Checkout session was created without a URL")
        logging.info(f"Created checkout session {session.id} for price {price_id}, org {org_id}")
        return session.url

    def create_portal_session(self, customer_id: str, return_url: Optional[str] = None) -> str:
        """
        Create a Customer Portal session for self-service billing.

        :return: The portal URL.
        :raises stripe.StripeError: if the Stripe API call fails.
        """
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url or f"{self.settings.frontend_url}/billing",
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logging.error(f"Error creating portal session for customer {customer_id}: {e}", exc_info=True)
            raise
        logging.info(f"Created portal session for customer {customer_id}")
        return session.url

    def list_plans(self) -> List[Dict[str, Any]]:
        """List the active prices that can be subscribed to."""
        try:
            prices = stripe.Price.list(active=True, expand=["data.product"], api_key=self.api_key)
        except stripe.StripeError as e:
            logging.error(f"Error listing prices: {e}", exc_info=True)
            raise
        plans = []
        for price in prices.data:
            price = _as_dict(price)
            plans.append({
                "id": price.get("id"),
                "product": price.get("product"),
                "unit_amount": price.get("unit_amount"),
                "currency": price.get("currency"),
                "recurring": price.get("recurring"),
            })
        return plans
