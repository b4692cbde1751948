from typing import Optional, Dict, Any, List
from datetime import date
from sqlalchemy.orm import Session
from sqlalchemy import or_

from ..models.enums import QuoteStatus
from ..models.quote import Quote, MagicLinkToken
from .base import CRUDBase, paginate


class QuoteRepository(CRUDBase[Quote, Any, Any]):
    def __init__(self):
        super().__init__(Quote)

    def get_by_number(self, db: Session, quote_number: str) -> Optional[Quote]:
        return self.base_query(db).filter(self.model.quote_number == quote_number).first()

    def list_quotes(
        self,
        db: Session,
        *,
        status: QuoteStatus = None,
        customer_id: int = None,
        standing_order_id: int = None,
        search: str = None,
        skip: int = 0,
        limit: int = 50
    ) -> Dict[str, Any]:
        query = self.base_query(db)
        if status:
            query = query.filter(self.model.status == status)
        if customer_id is not None:
            query = query.filter(self.model.customer_id == customer_id)
        if standing_order_id is not None:
            query = query.filter(self.model.standing_order_id == standing_order_id)
        if search:
            query = query.filter(or_(
                self.model.quote_number.ilike(f"%{search}%"),
                self.model.title.ilike(f"%{search}%")
            ))
        return paginate(query.order_by(self.model.id.desc()), skip, limit)

    def get_expiring(self, db: Session, until: date) -> List[Quote]:
        """Open quotes whose validity ends on or before ``until``"""
        return self.base_query(db).filter(
            self.model.status.in_([QuoteStatus.SENT, QuoteStatus.DRAFT]),
            self.model.valid_until.isnot(None),
            self.model.valid_until <= until
        ).order_by(self.model.valid_until).all()

    def get_token(self, db: Session, token_hash: str, for_update: bool = False) -> Optional[MagicLinkToken]:
        query = db.query(MagicLinkToken).filter(MagicLinkToken.token_hash == token_hash)
        if for_update:
            query = query.with_for_update()
        return query.first()
