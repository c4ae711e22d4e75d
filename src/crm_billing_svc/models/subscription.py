import datetime
import enum

from sqlalchemy import Boolean, Column, DateTime, String

from crm_billing_svc.models.base import Base


class SubscriptionStatus(str, enum.Enum):
    """Stripe subscription lifecycle states mirrored locally."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Subscription(Base):
    """
    Subscription model representing an organization's Stripe subscription.

    Rows are written only by webhook reconciliation. Cancellation is a status
    transition; rows are never deleted.
    """
    __tablename__ = 'subscriptions'

    stripe_subscription_id = Column(String, primary_key=True, unique=True, nullable=False)
    org_id = Column(String, nullable=False, index=True)
    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_price_id = Column(String, nullable=True)
    status = Column(String, nullable=False)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}

    def __repr__(self) -> str:
        return f"<Subscription(id={self.stripe_subscription_id}, org={self.org_id}, status={self.status})>"
