from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ....core.dependencies import (
    get_db,
    get_current_user,
    get_current_staff_user,
    ensure_customer_access,
    PaginationParams,
)
from ....core.exceptions import BusinessLogicError, format_error_response
from ....models.enums import OrderStatus, PaymentStatus
from ....models.user import User
from ....schemas.base import PaginatedResponse
from ....schemas.order import (
    Order,
    OrderDetail,
    OrderStatusUpdate,
    BulkStatusUpdate,
    BulkStatusResult,
    PaymentCreate,
    PaymentRejection,
    ShippingDetails,
    DeliveryAddressAssignment,
    OrderBlocker,
    PaymentInitialize,
    PaymentInitializeResult,
    PaymentTransaction,
    BalanceRequestResult,
    DeliveryAddressRequest,
    DeliveryAddressRequestResult,
)
from ....services.delivery_address_service import DeliveryAddressService
from ....services.order_service import OrderService
from ....services.order_status import parse_status_transition_error
from ....services.payment_service import PaymentService

router = APIRouter()


@router.get("/", response_model=PaginatedResponse[Order])
async def list_orders(
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(None),
    customer_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Orders newest first with optional filters. Customer users only see their own.
    """
    if not current_user.is_staff:
        customer_id = current_user.customer_id
    return OrderService(db).list_orders(
        status=order_status,
        payment_status=payment_status,
        customer_id=customer_id,
        search=search,
        start_date=start_date,
        end_date=end_date,
        skip=pagination.offset,
        limit=pagination.size,
    )


@router.post("/bulk-status", response_model=BulkStatusResult)
async def bulk_update_status(
    update: BulkStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Move many orders to one status. Invalid transitions are reported per order.
    """
    return OrderService(db).bulk_update_status(
        update.order_ids, update.status, notes=update.notes, actor=current_user.username
    )


@router.get("/{order_id}", response_model=OrderDetail)
async def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    order = OrderService(db).get_order(order_id)
    ensure_customer_access(current_user, order.customer_id)
    return order


@router.get("/{order_id}/blocker", response_model=OrderBlocker)
async def get_order_blocker(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    What stops the order from moving forward, and where it may go next
    """
    return OrderService(db).get_blocker(order_id)


@router.put("/{order_id}/status", response_model=OrderDetail)
async def update_order_status(
    order_id: int,
    update: OrderStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    service = OrderService(db)
    try:
        return service.update_status(order_id, update.status, notes=update.notes, actor=current_user.username)
    except BusinessLogicError as e:
        db.rollback()
        content = format_error_response(e)
        content["explanation"] = parse_status_transition_error(e.detail, service.get_order(order_id))
        return JSONResponse(status_code=e.status_code, content=content)


@router.post("/{order_id}/payments", response_model=OrderDetail)
async def record_payment(
    order_id: int,
    payment: PaymentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Record an offline payment (bank transfer, cash, cheque)
    """
    return OrderService(db).record_payment(
        order_id, payment.amount, method=payment.method, reference=payment.reference,
        actor=current_user.username,
    )


@router.post("/{order_id}/payments/reject", response_model=OrderDetail)
async def reject_payment(
    order_id: int,
    rejection: PaymentRejection,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return OrderService(db).reject_payment(order_id, rejection.reason, actor=current_user.username)


@router.get("/{order_id}/payments/transactions", response_model=List[PaymentTransaction])
async def list_payment_transactions(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return PaymentService(db).list_transactions(order_id)


@router.post("/{order_id}/payments/initialize", response_model=PaymentInitializeResult)
async def initialize_payment(
    order_id: int,
    payment: PaymentInitialize,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Start a Paystack checkout for the outstanding balance
    """
    service = PaymentService(db)
    ensure_customer_access(current_user, service.orders.get_order(order_id).customer_id)
    return service.initialize_payment(
        order_id, payment.email, phone=payment.phone, callback_url=payment.callback_url,
        actor=current_user.username,
    )


@router.post("/{order_id}/request-balance", response_model=BalanceRequestResult)
async def request_balance_payment(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Email the customer a reminder to pay the outstanding balance
    """
    return PaymentService(db).request_balance_payment(order_id, actor=current_user.username)


@router.put("/{order_id}/shipping", response_model=OrderDetail)
async def set_shipping_details(
    order_id: int,
    shipping: ShippingDetails,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return OrderService(db).set_shipping_details(
        order_id, shipping.carrier, shipping.tracking_number, actor=current_user.username
    )


@router.put("/{order_id}/delivery-address", response_model=OrderDetail)
async def set_delivery_address(
    order_id: int,
    assignment: DeliveryAddressAssignment,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    service = OrderService(db)
    ensure_customer_access(current_user, service.get_order(order_id).customer_id)
    return service.set_delivery_address(order_id, assignment.address_id, actor=current_user.username)


@router.post("/{order_id}/request-delivery-address", response_model=DeliveryAddressRequestResult)
async def request_delivery_address(
    order_id: int,
    request: Optional[DeliveryAddressRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Email the customer a single-use link to supply the delivery address
    """
    email = request.email if request else None
    return DeliveryAddressService(db).request_delivery_address(order_id, email=email, actor=current_user.username)
