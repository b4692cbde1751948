from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ....core.dependencies import (
    get_db,
    get_current_user,
    get_current_staff_user,
    ensure_customer_access,
    PaginationParams,
)
from ....models.enums import QuoteStatus
from ....models.user import User
from ....schemas.base import PaginatedResponse
from ....schemas.order import OrderDetail
from ....schemas.quote import (
    Quote,
    QuoteCreate,
    QuoteUpdate,
    SendForApproval,
    SendForApprovalResult,
)
from ....services.quote_service import QuoteService

router = APIRouter()


@router.get("/", response_model=PaginatedResponse[Quote])
async def list_quotes(
    quote_status: Optional[QuoteStatus] = Query(None, alias="status"),
    customer_id: Optional[int] = Query(None),
    standing_order_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Quotes newest first. Customer users only see their own.
    """
    if not current_user.is_staff:
        customer_id = current_user.customer_id
    return QuoteService(db).list_quotes(
        status=quote_status,
        customer_id=customer_id,
        standing_order_id=standing_order_id,
        search=search,
        skip=pagination.offset,
        limit=pagination.size,
    )


@router.post("/", response_model=Quote, status_code=status.HTTP_201_CREATED)
async def create_quote(
    quote_data: QuoteCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return QuoteService(db).create_quote(quote_data, actor=current_user.username)


@router.get("/{quote_id}", response_model=Quote)
async def get_quote(
    quote_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    quote = QuoteService(db).get_quote(quote_id)
    ensure_customer_access(current_user, quote.customer_id)
    return quote


@router.put("/{quote_id}", response_model=Quote)
async def update_quote(
    quote_id: int,
    quote_data: QuoteUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Edit a draft quote
    """
    return QuoteService(db).update_quote(quote_id, quote_data, actor=current_user.username)


@router.post("/{quote_id}/approve", response_model=Quote)
async def approve_pending_quote(
    quote_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Staff approval of a quote generated from a standing order
    """
    return QuoteService(db).approve_pending_quote(quote_id, actor=current_user.username)


@router.post("/{quote_id}/send", response_model=SendForApprovalResult)
async def send_for_approval(
    quote_id: int,
    send_data: SendForApproval,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Email the customer a magic link to approve or reject the quote
    """
    return QuoteService(db).send_for_approval(quote_id, email=send_data.email, actor=current_user.username)


@router.post("/{quote_id}/convert", response_model=OrderDetail, status_code=status.HTTP_201_CREATED)
async def convert_to_order(
    quote_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return QuoteService(db).convert_to_order(quote_id, actor=current_user.username)
