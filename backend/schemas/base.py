from pydantic import BaseModel
from typing import Generic, List, TypeVar

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    pages: int
    per_page: int
    has_next: bool
    has_prev: bool


class MessageResponse(BaseModel):
    message: str
