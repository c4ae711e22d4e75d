"""
Error taxonomy for the billing webhook pipeline.

Errors deriving from ``RecoverableEventError`` are acknowledged to Stripe
(HTTP 200) so the event is not redelivered. Every other exception escaping
event processing fails the webhook call, which makes Stripe retry it.
"""


class BillingError(Exception):
    """Base class for billing errors."""


class SignatureInvalid(BillingError):
    """The webhook signature did not match the payload."""


class InvalidEvent(BillingError):
    """A verified payload that is not a usable Stripe event."""


class RecoverableEventError(BillingError):
    """The event cannot be applied, but redelivery would not help."""


class AttributionGap(RecoverableEventError):
    """No organization could be attributed to the subscription."""

    def __init__(self, stripe_subscription_id: str) -> None:
        self.stripe_subscription_id = stripe_subscription_id
        super().__init__(f"Subscription {stripe_subscription_id} has no org_id in metadata")


class ProcessorLookupFailed(RecoverableEventError):
    """A best-effort read against the Stripe API failed."""


class UnsupportedSubscriptionStatus(RecoverableEventError):
    """Stripe reported a status outside the statuses stored locally."""
