from typing import Optional, Dict, Any, List
from datetime import date
from sqlalchemy.orm import Session

from ..models.enums import StandingOrderStatus, GenerationStatus
from ..models.standing_order import StandingOrder, StandingOrderGeneration
from .base import CRUDBase, paginate


class StandingOrderRepository(CRUDBase[StandingOrder, Any, Any]):
    def __init__(self):
        super().__init__(StandingOrder)

    def get_for_update(self, db: Session, id: int) -> Optional[StandingOrder]:
        """Row lock held until the surrounding transaction ends"""
        return self.base_query(db).filter(self.model.id == id).with_for_update().first()

    def list_standing_orders(
        self,
        db: Session,
        *,
        status: StandingOrderStatus = None,
        customer_id: int = None,
        skip: int = 0,
        limit: int = 50
    ) -> Dict[str, Any]:
        query = self.base_query(db)
        if status:
            query = query.filter(self.model.status == status)
        if customer_id is not None:
            query = query.filter(self.model.customer_id == customer_id)
        return paginate(query.order_by(self.model.next_scheduled_date, self.model.id), skip, limit)

    def get_due(self, db: Session, today: date) -> List[StandingOrder]:
        return self.base_query(db).filter(
            self.model.status == StandingOrderStatus.ACTIVE,
            self.model.next_scheduled_date.isnot(None),
            self.model.next_scheduled_date <= today
        ).order_by(self.model.next_scheduled_date, self.model.id).all()

    def successful_generation(self, db: Session, standing_order_id: int,
                              scheduled_date: date) -> Optional[StandingOrderGeneration]:
        return db.query(StandingOrderGeneration).filter(
            StandingOrderGeneration.standing_order_id == standing_order_id,
            StandingOrderGeneration.scheduled_date == scheduled_date,
            StandingOrderGeneration.status == GenerationStatus.SUCCESS
        ).first()

    def list_generations(self, db: Session, standing_order_id: int, skip: int = 0, limit: int = 50) -> Dict[str, Any]:
        query = db.query(StandingOrderGeneration).filter(
            StandingOrderGeneration.standing_order_id == standing_order_id
        )
        return paginate(query.order_by(StandingOrderGeneration.id.desc()), skip, limit)
