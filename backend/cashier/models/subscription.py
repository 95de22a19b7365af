from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func

from cashier.core.database import Base
from cashier.models.shared import UUIDType, generate_uuid


class Subscription(Base):
    """Local mirror of one gateway subscription.

    Rows are never deleted. A cancelled or swapped-away subscription keeps its
    row with ``ends_at`` set.
    """

    __tablename__ = "subscriptions"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    owner_id = Column(
        UUIDType,
        ForeignKey("owners.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False, index=True)
    gateway_id = Column(String(255), unique=True, index=True, nullable=False)
    gateway_plan = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
