from sqlalchemy import Column, DateTime, String, func

from cashier.core.database import Base
from cashier.models.shared import UUIDType, generate_uuid


class Owner(Base):
    """The billable party. Only the columns the gateway mirror needs live here."""

    __tablename__ = "owners"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    external_id = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)

    # Gateway customer and default payment method (brand/last four or PayPal)
    gateway_customer_id = Column(String(255), nullable=True, index=True)
    card_brand = Column(String(50), nullable=True)
    card_last_four = Column(String(4), nullable=True)
    paypal_email = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
