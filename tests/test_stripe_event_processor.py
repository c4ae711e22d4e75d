import pytest

from crm_billing_svc import stripe_event_processor
from crm_billing_svc.exceptions import InvalidEvent, ProcessorLookupFailed
from crm_billing_svc.models.subscription import Subscription
from crm_billing_svc.subscription_reconciler import SubscriptionReconciler
from crm_billing_svc.subscription_store import SubscriptionStore
from factories import make_subscription


class RecordingReconciler:
    """Records which reconciler operation an event was routed to."""

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def _record(self, name, obj):
        self.calls.append((name, obj))
        if self.error:
            raise self.error

    def upsert_from_subscription(self, subscription):
        self._record('upsert', subscription)

    def mark_canceled(self, subscription):
        self._record('cancel', subscription)

    def reconcile_from_invoice(self, invoice, best_effort=False):
        self._record('invoice', invoice)

    def handle_payment_failed(self, invoice):
        self._record('payment_failed', invoice)


def event(event_type, data_object=None, event_id='evt_1'):
    return {"id": event_id, "type": event_type, "data": {"object": data_object or {}}, "created": 1234567890}


@pytest.mark.parametrize("event_type,expected", [
    ('customer.subscription.created', 'upsert'),
    ('customer.subscription.updated', 'upsert'),
    ('customer.subscription.deleted', 'cancel'),
    ('invoice.payment_succeeded', 'invoice'),
    ('invoice.payment_failed', 'payment_failed'),
])
def test_event_routing(event_type, expected):
    reconciler = RecordingReconciler()
    data_object = {"id": "obj_1"}
    stripe_event_processor.process_event(event(event_type, data_object), reconciler)
    assert reconciler.calls == [(expected, data_object)]


@pytest.mark.parametrize("event_type", [
    'checkout.session.completed',
    'customer.subscription.trial_will_end',
    'invoice.upcoming',
])
def test_acknowledged_only_events(event_type, caplog):
    reconciler = RecordingReconciler()
    with caplog.at_level('INFO'):
        stripe_event_processor.process_event(event(event_type), reconciler)
    assert reconciler.calls == []
    assert any("acknowledged" in record.message for record in caplog.records)


def test_unhandled_event_type(caplog):
    reconciler = RecordingReconciler()
    with caplog.at_level('INFO'):
        stripe_event_processor.process_event(event('unknown.event'), reconciler)
    assert reconciler.calls == []
    assert any("Unhandled event type" in record.message for record in caplog.records)


def test_event_missing_type():
    with pytest.raises(InvalidEvent) as excinfo:
        stripe_event_processor.process_event({"id": "evt_3", "data": {"object": {}}}, RecordingReconciler())
    assert "Missing 'type'" in str(excinfo.value)


def test_recoverable_error_is_swallowed(caplog):
    reconciler = RecordingReconciler(error=ProcessorLookupFailed("Stripe unreachable"))
    stripe_event_processor.process_event(event('invoice.payment_succeeded', {"id": "in_1"}), reconciler)
    assert any("Stripe unreachable" in record.message for record in caplog.records)


def test_unexpected_error_propagates():
    reconciler = RecordingReconciler(error=RuntimeError("Commit failed"))
    with pytest.raises(RuntimeError, match="Commit failed"):
        stripe_event_processor.process_event(event('customer.subscription.updated', {"id": "sub_1"}), reconciler)


def test_missing_org_id_is_logged_not_raised(db_session, caplog):
    reconciler = SubscriptionReconciler(SubscriptionStore(db_session), stripe_integration=None)
    stripe_event_processor.process_event(
        event('customer.subscription.updated', make_subscription(org_id=None)), reconciler
    )
    assert db_session.query(Subscription).count() == 0
    assert any("no org_id" in record.message for record in caplog.records)


def test_commit_failure_propagates(db_session, monkeypatch):
    reconciler = SubscriptionReconciler(SubscriptionStore(db_session), stripe_integration=None)

    def failing_commit():
        raise Exception("Commit failed")

    monkeypatch.setattr(db_session, "commit", failing_commit)
    with pytest.raises(Exception, match="Commit failed"):
        stripe_event_processor.process_event(event('customer.subscription.updated', make_subscription()), reconciler)
