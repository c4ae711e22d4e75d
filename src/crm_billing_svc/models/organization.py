from sqlalchemy import Column, String

from crm_billing_svc.models.base import Base


class OrganizationMember(Base):
    """
    Links an authenticated user to the organization it belongs to.

    Maintained by the account side of the product; billing only reads it.
    """
    __tablename__ = 'organization_members'

    user_id = Column(String, primary_key=True, nullable=False)
    org_id = Column(String, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<OrganizationMember(user={self.user_id}, org={self.org_id})>"
