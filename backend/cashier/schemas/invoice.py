"""Read-only projection of a gateway invoice.

Nothing here is persisted; each fetch rebuilds the view from gateway state.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, computed_field


class InvoiceLineItem(BaseModel):
    description: str
    quantity: int = 1
    amount: Decimal


class InvoiceDiscount(BaseModel):
    """A discount (coupon) or add-on entry as reported by the gateway."""

    id: str
    name: str | None = None
    amount: Decimal
    quantity: int = 1
    number_of_billing_cycles: int | None = None

    @property
    def total(self) -> Decimal:
        return self.amount * self.quantity


class InvoiceView(BaseModel):
    id: str
    customer_id: str | None = None
    subscription_id: str | None = None
    status: str | None = None
    currency: str = "USD"
    total: Decimal
    date: datetime
    line_items: list[InvoiceLineItem] = Field(default_factory=list)
    discounts: list[InvoiceDiscount] = Field(default_factory=list)
    add_ons: list[InvoiceDiscount] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def amount_off(self) -> Decimal:
        return sum((d.total for d in self.discounts), Decimal("0"))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_discount(self) -> bool:
        return self.amount_off > 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def subtotal(self) -> Decimal:
        """Total before discounts and add-ons were applied."""
        add_on_total = sum((a.total for a in self.add_ons), Decimal("0"))
        return max(Decimal("0"), self.total + self.amount_off - add_on_total)

    def coupons(self) -> list[str]:
        return [d.id for d in self.discounts]
