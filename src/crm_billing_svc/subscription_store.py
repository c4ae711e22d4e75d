import logging
import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from crm_billing_svc.models.organization import OrganizationMember
from crm_billing_svc.models.subscription import Subscription, utcnow

# Columns an upsert never overwrites
_INSERT_ONLY_COLUMNS = {"stripe_subscription_id", "created_at"}


class SubscriptionStore:
    """
    Persistence for subscription records, keyed by Stripe subscription id.

    Writes commit immediately. A failed commit is rolled back and re-raised so
    the caller can fail the webhook delivery.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(Subscription)
        if dialect == "sqlite":
            return sqlite.insert(Subscription)
        raise NotImplementedError(f"Upsert is not supported on dialect {dialect}")

    def upsert(self, values: Dict[str, Any]) -> None:
        """
        Insert the record or overwrite every mutable field of the existing one.

        :param values: Column values; must include stripe_subscription_id and org_id.
        :raises ValueError: if org_id or stripe_subscription_id is empty.
        """
        if not values.get("org_id"):
            raise ValueError("org_id is required to store a subscription")
        if not values.get("stripe_subscription_id"):
            raise ValueError("stripe_subscription_id is required to store a subscription")

        now = utcnow()
        row = dict(values)
        row["updated_at"] = now
        row.setdefault("created_at", now)

        stmt = self._insert().values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Subscription.stripe_subscription_id],
            set_={key: stmt.excluded[key] for key in row if key not in _INSERT_ONLY_COLUMNS},
        )
        try:
            self.db.execute(stmt)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logging.error(f"Failed to upsert subscription {row['stripe_subscription_id']}: {e}", exc_info=True)
            raise
        logging.info(f"Stored subscription {row['stripe_subscription_id']} for org {row['org_id']} with status {row.get('status')}")

    def mark_canceled(self, stripe_subscription_id: str, cancelled_at: datetime.datetime) -> int:
        """
        Transition an existing record to canceled.

        :return: Number of rows updated; 0 when the subscription is unknown.
        """
        stmt = (
            update(Subscription)
            .where(Subscription.stripe_subscription_id == stripe_subscription_id)
            .values(status="canceled", cancelled_at=cancelled_at, updated_at=cancelled_at)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logging.error(f"Failed to cancel subscription {stripe_subscription_id}: {e}", exc_info=True)
            raise
        return result.rowcount

    def get(self, stripe_subscription_id: str) -> Optional[Subscription]:
        return self.db.get(Subscription, stripe_subscription_id)

    def list_for_org(self, org_id: str) -> List[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.org_id == org_id)
            .order_by(Subscription.created_at.desc())
        )
        return list(self.db.scalars(stmt))

    def org_id_for_user(self, user_id: str) -> Optional[str]:
        member = self.db.get(OrganizationMember, user_id)
        return member.org_id if member else None
