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
from ....models.enums import StandingOrderStatus
from ....models.user import User
from ....schemas.base import PaginatedResponse
from ....schemas.standing_order import (
    StandingOrder,
    StandingOrderCreate,
    StandingOrderUpdate,
    StandingOrderStatusUpdate,
    StandingOrderItemsReplace,
    StandingOrderGeneration,
    GenerateRequest,
    GenerationResult,
    NextDateRequest,
    NextDateResponse,
)
from ....services.standing_order_service import (
    StandingOrderService,
    calculate_next_schedule_date,
    get_frequency_label,
)

router = APIRouter()


@router.get("/", response_model=PaginatedResponse[StandingOrder])
async def list_standing_orders(
    standing_status: Optional[StandingOrderStatus] = Query(None, alias="status"),
    customer_id: Optional[int] = Query(None),
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if not current_user.is_staff:
        customer_id = current_user.customer_id
    return StandingOrderService(db).list_standing_orders(
        status=standing_status, customer_id=customer_id,
        skip=pagination.offset, limit=pagination.size,
    )


@router.post("/", response_model=StandingOrder, status_code=status.HTTP_201_CREATED)
async def create_standing_order(
    data: StandingOrderCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return StandingOrderService(db).create_standing_order(data, actor=current_user.username)


@router.post("/next-date", response_model=NextDateResponse)
async def preview_next_date(
    request: NextDateRequest,
    current_user: User = Depends(get_current_user)
):
    """
    Preview the next run date for a schedule
    """
    return {
        "next_date": calculate_next_schedule_date(
            request.frequency, request.day_of_week, request.day_of_month, request.from_date
        ),
        "frequency_label": get_frequency_label(request.frequency),
    }


@router.get("/{standing_order_id}", response_model=StandingOrder)
async def get_standing_order(
    standing_order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    standing_order = StandingOrderService(db).get_standing_order(standing_order_id)
    ensure_customer_access(current_user, standing_order.customer_id)
    return standing_order


@router.put("/{standing_order_id}", response_model=StandingOrder)
async def update_standing_order(
    standing_order_id: int,
    data: StandingOrderUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return StandingOrderService(db).update_standing_order(standing_order_id, data, actor=current_user.username)


@router.put("/{standing_order_id}/items", response_model=StandingOrder)
async def replace_items(
    standing_order_id: int,
    data: StandingOrderItemsReplace,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return StandingOrderService(db).replace_items(standing_order_id, data.items, actor=current_user.username)


@router.put("/{standing_order_id}/status", response_model=StandingOrder)
async def update_standing_order_status(
    standing_order_id: int,
    update: StandingOrderStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Pause, resume or cancel a standing order
    """
    return StandingOrderService(db).update_status(
        standing_order_id, update.status, reason=update.reason, actor=current_user.username
    )


@router.post("/{standing_order_id}/generate", response_model=GenerationResult)
async def generate_order(
    standing_order_id: int,
    request: GenerateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Generate the quote (and order, when no approval is needed) for one run
    """
    return StandingOrderService(db).generate_order_from_standing_order(
        standing_order_id,
        generation_type=request.generation_type,
        scheduled_date=request.scheduled_date,
        actor=current_user.username,
    )


@router.get("/{standing_order_id}/generations", response_model=PaginatedResponse[StandingOrderGeneration])
async def list_generations(
    standing_order_id: int,
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return StandingOrderService(db).list_generations(standing_order_id, pagination.offset, pagination.size)
