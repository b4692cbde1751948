from typing import Optional, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import or_, func

from ..models.customer import Customer, CustomerAddress
from ..models.enums import CustomerStatus, OrderStatus
from ..models.order import Order
from ..schemas.customer import CustomerCreate, CustomerUpdate
from .base import CRUDBase, paginate


class CustomerRepository(CRUDBase[Customer, CustomerCreate, CustomerUpdate]):
    def __init__(self):
        super().__init__(Customer)

    def get_by_code(self, db: Session, customer_code: str) -> Optional[Customer]:
        return self.base_query(db).filter(self.model.customer_code == customer_code).first()

    def get_by_email(self, db: Session, email: str) -> Optional[Customer]:
        return self.base_query(db).filter(func.lower(self.model.email) == email.lower()).first()

    def search_customers(
        self,
        db: Session,
        *,
        search_term: str = None,
        city: str = None,
        status: CustomerStatus = None,
        skip: int = 0,
        limit: int = 100
    ) -> Dict[str, Any]:
        """Customer search across code, company, contact and email"""
        query = self.base_query(db)

        if search_term:
            search_conditions = [
                self.model.customer_code.ilike(f"%{search_term}%"),
                self.model.company_name.ilike(f"%{search_term}%"),
                self.model.contact_name.ilike(f"%{search_term}%"),
                self.model.email.ilike(f"%{search_term}%")
            ]
            query = query.filter(or_(*search_conditions))

        if city:
            query = query.filter(self.model.city.ilike(f"%{city}%"))

        if status:
            query = query.filter(self.model.status == status)

        return paginate(query.order_by(self.model.company_name), skip, limit)

    def get_address(self, db: Session, customer_id: int, address_id: int) -> Optional[CustomerAddress]:
        return db.query(CustomerAddress).filter(
            CustomerAddress.id == address_id,
            CustomerAddress.customer_id == customer_id
        ).first()

    def order_totals(self, db: Session, customer_id: int) -> Dict[str, Any]:
        """Order count, revenue and outstanding balance for one customer"""
        live = db.query(Order).filter(
            Order.customer_id == customer_id,
            Order.is_deleted == False,  # noqa: E712
            Order.status != OrderStatus.CANCELLED
        )
        row = live.with_entities(
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_amount), 0.0),
            func.coalesce(func.sum(Order.balance_remaining), 0.0),
        ).one()
        return {
            "total_orders": row[0],
            "total_revenue": round(float(row[1]), 2),
            "outstanding_balance": round(float(row[2]), 2),
        }
