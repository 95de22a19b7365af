"""Payment methods and invoices for an owner."""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from cashier.core.exceptions import GatewayResourceNotFound, InvoiceNotFound, OwnerNotFound
from cashier.core.locks import owner_locks
from cashier.models.owner import Owner
from cashier.repositories.owner_repository import OwnerRepository
from cashier.schemas.invoice import InvoiceView
from cashier.services.gateway import GatewayClientBase

logger = logging.getLogger(__name__)


class BillingService:
    def __init__(self, db: Session, gateway: GatewayClientBase):
        self.db = db
        self.gateway = gateway
        self.owner_repo = OwnerRepository(db)

    def _get_owner(self, owner_id: UUID) -> Owner:
        owner = self.owner_repo.get_by_id(owner_id)
        if not owner:
            raise OwnerNotFound(str(owner_id))
        return owner

    def update_payment_method(self, owner_id: UUID, payment_token: str) -> Owner:
        """Vault a new default payment method, creating the gateway customer if needed.

        The gateway moves the owner's active subscriptions onto the new method.
        """
        with owner_locks.hold(owner_id):
            owner = self.owner_repo.get_by_id_for_update(owner_id)
            if not owner:
                raise OwnerNotFound(str(owner_id))

            if not owner.gateway_customer_id:
                customer = self.gateway.create_customer(
                    {"name": owner.name, "email": owner.email}, payment_token
                )
                owner = self.owner_repo.set_gateway_customer(
                    owner, customer.customer_id, customer.payment_method
                )
                logger.info(
                    "Created gateway customer %s for owner %s", customer.customer_id, owner.id
                )
                return owner

            details = self.gateway.update_payment_method(
                str(owner.gateway_customer_id), payment_token
            )
            owner = self.owner_repo.set_payment_method(owner, details)
            logger.info("Updated payment method for owner %s", owner.id)
            return owner

    def invoices(self, owner_id: UUID, include_pending: bool = False) -> list[InvoiceView]:
        """Settled invoices for the owner, newest first. Empty without a gateway customer."""
        owner = self._get_owner(owner_id)
        if not owner.gateway_customer_id:
            return []
        return self.gateway.list_invoices(str(owner.gateway_customer_id), include_pending)

    def find_invoice(self, owner_id: UUID, invoice_id: str) -> InvoiceView | None:
        owner = self._get_owner(owner_id)
        if not owner.gateway_customer_id:
            return None
        try:
            invoice = self.gateway.fetch_invoice(invoice_id)
        except GatewayResourceNotFound:
            return None
        # Never expose another customer's invoice
        if invoice.customer_id != owner.gateway_customer_id:
            logger.warning(
                "Invoice %s does not belong to owner %s", invoice_id, owner.id
            )
            return None
        return invoice

    def find_invoice_or_fail(self, owner_id: UUID, invoice_id: str) -> InvoiceView:
        invoice = self.find_invoice(owner_id, invoice_id)
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        return invoice
