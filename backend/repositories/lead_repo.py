from typing import Dict, Any
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import or_

from ..models.enums import LeadStatus
from ..models.lead import Lead
from .base import CRUDBase, paginate


class LeadRepository(CRUDBase[Lead, Any, Any]):
    def __init__(self):
        super().__init__(Lead)

    def count_from_ip_since(self, db: Session, ip_address: str, since: datetime) -> int:
        return db.query(self.model).filter(
            self.model.ip_address == ip_address,
            self.model.created_at >= since
        ).count()

    def list_leads(
        self,
        db: Session,
        *,
        status: LeadStatus = None,
        source: str = None,
        search: str = None,
        skip: int = 0,
        limit: int = 50
    ) -> Dict[str, Any]:
        query = self.base_query(db)
        if status:
            query = query.filter(self.model.status == status)
        if source:
            query = query.filter(self.model.source == source)
        if search:
            query = query.filter(or_(
                self.model.title.ilike(f"%{search}%"),
                self.model.company_name.ilike(f"%{search}%"),
                self.model.contact_email.ilike(f"%{search}%")
            ))
        return paginate(query.order_by(self.model.id.desc()), skip, limit)
