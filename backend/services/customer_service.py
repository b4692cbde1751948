from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from ..config.logging import get_logger
from ..core.exceptions import ConflictError, NotFoundError
from ..models.customer import Customer, CustomerAddress
from ..models.enums import CustomerStatus, OrderStatus
from ..models.order import Order
from ..schemas.customer import CustomerCreate, CustomerUpdate, CustomerAddressCreate
from ..repositories.customer_repo import CustomerRepository
from ..utils.identifiers import generate_reference, CUSTOMER_PREFIX
from .credit_service import CreditService, serialize_credit_terms
from .notification_service import NotificationService

logger = get_logger(__name__)

CLOSED_ORDER_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


class CustomerService:
    def __init__(self, db: Session, notifications: NotificationService = None):
        self.db = db
        self.customer_repo = CustomerRepository()
        self.notifications = notifications or NotificationService(db)

    def _generate_code(self) -> str:
        while True:
            code = generate_reference(CUSTOMER_PREFIX)
            if not self.customer_repo.get_by_code(self.db, code):
                return code

    def create_customer(self, customer_data: CustomerCreate, actor: str = None) -> Customer:
        """Create a customer with its delivery addresses"""
        if customer_data.customer_code and self.customer_repo.get_by_code(self.db, customer_data.customer_code):
            raise ConflictError(f"Customer code {customer_data.customer_code} already exists")
        if customer_data.email and self.customer_repo.get_by_email(self.db, customer_data.email):
            raise ConflictError(f"A customer with email {customer_data.email} already exists")

        data = customer_data.model_dump(exclude={"addresses", "customer_code"})
        customer = Customer(
            customer_code=customer_data.customer_code or self._generate_code(),
            created_by=actor,
            **data
        )
        if data.get("preferred_currency"):
            customer.preferred_currency = data["preferred_currency"].upper()
        for address_data in customer_data.addresses:
            customer.addresses.append(CustomerAddress(**address_data.model_dump()))
        self._ensure_single_default(customer)

        self.db.add(customer)
        self.db.commit()
        self.db.refresh(customer)
        logger.info(f"Customer {customer.customer_code} created")
        return customer

    def get_customer(self, customer_id: int) -> Customer:
        return self.customer_repo.get_or_404(self.db, customer_id, "Customer")

    def get_customer_by_code(self, customer_code: str) -> Customer:
        customer = self.customer_repo.get_by_code(self.db, customer_code)
        if not customer:
            raise NotFoundError("Customer", customer_code)
        return customer

    def search_customers(self, **filters) -> Dict[str, Any]:
        return self.customer_repo.search_customers(self.db, **filters)

    def update_customer(self, customer_id: int, customer_data: CustomerUpdate, actor: str = None) -> Customer:
        customer = self.get_customer(customer_id)
        changes = customer_data.model_dump(exclude_unset=True)

        new_email = changes.get("email")
        if new_email and (customer.email or "").lower() != new_email.lower():
            existing = self.customer_repo.get_by_email(self.db, new_email)
            if existing and existing.id != customer.id:
                raise ConflictError(f"A customer with email {new_email} already exists")
        if changes.get("preferred_currency"):
            changes["preferred_currency"] = changes["preferred_currency"].upper()

        old_status = customer.status
        for field, value in changes.items():
            setattr(customer, field, value)
        customer.updated_by = actor

        if "status" in changes and changes["status"] != old_status:
            self.notifications.log_audit_event(
                "customer_status_changed",
                {"customer_id": customer.id, "from": str(old_status), "to": str(changes["status"])},
                severity="medium" if changes["status"] == CustomerStatus.SUSPENDED else "low",
                actor=actor,
            )

        self.db.commit()
        self.db.refresh(customer)
        return customer

    def delete_customer(self, customer_id: int, actor: str = None) -> Customer:
        """Soft delete. Customers with open orders cannot be removed."""
        customer = self.get_customer(customer_id)
        open_orders = customer.orders.filter(
            Order.status.notin_(CLOSED_ORDER_STATUSES),
            Order.is_deleted == False  # noqa: E712
        ).count()
        if open_orders:
            raise ConflictError(f"Customer {customer.customer_code} has {open_orders} open order(s)")

        customer.soft_delete()
        customer.status = CustomerStatus.INACTIVE
        customer.updated_by = actor
        self.notifications.log_audit_event(
            "customer_deleted", {"customer_id": customer.id, "customer_code": customer.customer_code},
            severity="medium", actor=actor,
        )
        self.db.commit()
        return customer

    # Addresses
    @staticmethod
    def _ensure_single_default(customer: Customer, preferred: CustomerAddress = None):
        if not customer.addresses:
            return
        default = preferred
        if default is None:
            defaults = [address for address in customer.addresses if address.is_default]
            default = defaults[0] if defaults else customer.addresses[0]
        for address in customer.addresses:
            address.is_default = address is default

    def list_addresses(self, customer_id: int) -> List[CustomerAddress]:
        return list(self.get_customer(customer_id).addresses)

    def add_address(self, customer_id: int, address_data: CustomerAddressCreate) -> CustomerAddress:
        customer = self.get_customer(customer_id)
        address = CustomerAddress(**address_data.model_dump())
        customer.addresses.append(address)
        self._ensure_single_default(customer, address if address.is_default else None)
        self.db.commit()
        self.db.refresh(address)
        return address

    def set_default_address(self, customer_id: int, address_id: int) -> CustomerAddress:
        customer = self.get_customer(customer_id)
        address = self.customer_repo.get_address(self.db, customer_id, address_id)
        if not address:
            raise NotFoundError("CustomerAddress", address_id)
        self._ensure_single_default(customer, address)
        self.db.commit()
        self.db.refresh(address)
        return address

    def remove_address(self, customer_id: int, address_id: int):
        customer = self.get_customer(customer_id)
        address = self.customer_repo.get_address(self.db, customer_id, address_id)
        if not address:
            raise NotFoundError("CustomerAddress", address_id)
        in_use = self.db.query(Order).filter(
            Order.delivery_address_id == address.id,
            Order.status.notin_(CLOSED_ORDER_STATUSES)
        ).count()
        if in_use:
            raise ConflictError("Address is the delivery address of an open order")
        customer.addresses.remove(address)
        self._ensure_single_default(customer)
        self.db.commit()

    # Summary
    def get_customer_summary(self, customer_id: int) -> Dict[str, Any]:
        customer = self.get_customer(customer_id)
        credit = CreditService(self.db, self.notifications)
        totals = self.customer_repo.order_totals(self.db, customer_id)
        loyalty = credit.get_loyalty(customer_id)
        open_orders = customer.orders.filter(
            Order.status.notin_(CLOSED_ORDER_STATUSES),
            Order.is_deleted == False  # noqa: E712
        ).count()
        terms = credit.get_terms(customer_id)

        return {
            "customer_id": customer.id,
            "customer_code": customer.customer_code,
            "company_name": customer.company_name,
            "status": customer.status,
            "loyalty_tier": loyalty["loyalty_tier"],
            "total_orders": totals["total_orders"],
            "delivered_orders": loyalty["lifetime_orders"],
            "open_orders": open_orders,
            "total_order_value": totals["total_revenue"],
            "outstanding_balance": totals["outstanding_balance"],
            "credit": serialize_credit_terms(terms) if terms else None,
        }

    def find_or_create_for_contact(self, company_name: str, contact_name: Optional[str],
                                   email: Optional[str], actor: str = None) -> Customer:
        """Existing customer by email, or a new one for the contact"""
        if email:
            existing = self.customer_repo.get_by_email(self.db, email)
            if existing:
                return existing
        return self.create_customer(
            CustomerCreate(company_name=company_name, contact_name=contact_name, email=email),
            actor=actor,
        )
