from typing import Any, Dict, Generic, Optional, Type, TypeVar
from sqlalchemy.orm import Session
from pydantic import BaseModel
import math

from ..core.exceptions import NotFoundError

ModelType = TypeVar("ModelType")
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)


def paginate(query, skip: int, limit: int) -> Dict[str, Any]:
    """Run a query with offset/limit and return items plus pagination metadata."""
    total = query.count()
    items = query.offset(skip).limit(limit).all()

    total_pages = math.ceil(total / limit) if limit > 0 else 1
    current_page = (skip // limit) + 1 if limit > 0 else 1

    return {
        "items": items,
        "total": total,
        "page": current_page,
        "pages": total_pages,
        "per_page": limit,
        "has_next": current_page < total_pages,
        "has_prev": current_page > 1
    }


class CRUDBase(Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    def __init__(self, model: Type[ModelType]):
        """
        Repository base with soft-delete aware lookups for ``model``.
        """
        self.model = model

    def base_query(self, db: Session):
        """Query over records that are not soft deleted"""
        query = db.query(self.model)
        if hasattr(self.model, "is_deleted"):
            query = query.filter(self.model.is_deleted == False)  # noqa: E712
        return query

    def get(self, db: Session, id: Any) -> Optional[ModelType]:
        """Get a single record by ID"""
        return self.base_query(db).filter(self.model.id == id).first()

    def get_or_404(self, db: Session, id: Any, resource: str = None) -> ModelType:
        obj = self.get(db, id)
        if obj is None:
            raise NotFoundError(resource or self.model.__name__, id)
        return obj

