from uuid import UUID

from sqlalchemy.orm import Session

from cashier.models.owner import Owner
from cashier.schemas.owner import OwnerCreate
from cashier.services.gateway import PaymentMethodDetails


class OwnerRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, owner_id: UUID) -> Owner | None:
        return self.db.query(Owner).filter(Owner.id == owner_id).first()

    def get_by_id_for_update(self, owner_id: UUID) -> Owner | None:
        """Row-lock the owner for the rest of the transaction (no-op on SQLite)."""
        return self.db.query(Owner).filter(Owner.id == owner_id).with_for_update().first()

    def create(self, data: OwnerCreate) -> Owner:
        owner = Owner(**data.model_dump())
        self.db.add(owner)
        self.db.commit()
        self.db.refresh(owner)
        return owner

    def set_gateway_customer(
        self,
        owner: Owner,
        gateway_customer_id: str,
        payment_method: PaymentMethodDetails | None = None,
    ) -> Owner:
        owner.gateway_customer_id = gateway_customer_id  # type: ignore[assignment]
        if payment_method is not None:
            self._apply_payment_method(owner, payment_method)
        self.db.commit()
        self.db.refresh(owner)
        return owner

    def set_payment_method(self, owner: Owner, payment_method: PaymentMethodDetails) -> Owner:
        self._apply_payment_method(owner, payment_method)
        self.db.commit()
        self.db.refresh(owner)
        return owner

    @staticmethod
    def _apply_payment_method(owner: Owner, payment_method: PaymentMethodDetails) -> None:
        # A PayPal account clears card details and vice versa
        owner.card_brand = payment_method.card_brand  # type: ignore[assignment]
        owner.card_last_four = payment_method.card_last_four  # type: ignore[assignment]
        owner.paypal_email = payment_method.paypal_email  # type: ignore[assignment]

    def external_id_exists(self, external_id: str) -> bool:
        """Check if an owner with the given external_id already exists."""
        query = self.db.query(Owner).filter(Owner.external_id == external_id)
        return query.first() is not None
