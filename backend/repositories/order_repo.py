from typing import Optional, Dict, Any, List
from datetime import datetime
from sqlalchemy.orm import Session, selectinload
from sqlalchemy import or_

from ..models.customer import Customer
from ..models.enums import OrderStatus, PaymentStatus
from ..models.order import Order
from .base import CRUDBase, paginate


class OrderRepository(CRUDBase[Order, Any, Any]):
    def __init__(self):
        super().__init__(Order)

    def get_by_number(self, db: Session, order_number: str) -> Optional[Order]:
        return self.base_query(db).filter(self.model.order_number == order_number).first()

    def get_by_ids(self, db: Session, order_ids: List[int]) -> List[Order]:
        return self.base_query(db).filter(self.model.id.in_(order_ids)).all()

    def get_by_payment_reference(self, db: Session, reference: str) -> Optional[Order]:
        return self.base_query(db).filter(self.model.payment_reference == reference).first()

    def list_orders(
        self,
        db: Session,
        *,
        status: OrderStatus = None,
        payment_status: PaymentStatus = None,
        customer_id: int = None,
        search: str = None,
        start_date: datetime = None,
        end_date: datetime = None,
        skip: int = 0,
        limit: int = 50
    ) -> Dict[str, Any]:
        """Orders newest first with optional filters"""
        query = self.base_query(db).options(selectinload(Order.items))

        if status:
            query = query.filter(self.model.status == status)
        if payment_status:
            query = query.filter(self.model.payment_status == payment_status)
        if customer_id is not None:
            query = query.filter(self.model.customer_id == customer_id)
        if start_date:
            query = query.filter(self.model.created_at >= start_date)
        if end_date:
            query = query.filter(self.model.created_at <= end_date)
        if search:
            query = query.join(Customer, Customer.id == Order.customer_id).filter(or_(
                self.model.order_number.ilike(f"%{search}%"),
                self.model.tracking_number.ilike(f"%{search}%"),
                Customer.company_name.ilike(f"%{search}%")
            ))

        return paginate(query.order_by(self.model.created_at.desc(), self.model.id.desc()), skip, limit)
