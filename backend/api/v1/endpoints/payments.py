from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ....core.dependencies import get_db, get_current_user, ensure_customer_access
from ....models.user import User
from ....schemas.order import PaymentVerify, PaymentVerifyResult
from ....services.payment_service import PaymentService

router = APIRouter()


@router.post("/verify", response_model=PaymentVerifyResult)
async def verify_payment(
    payload: PaymentVerify,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Confirm a checkout with Paystack after the customer returns from the payment page.
    """
    service = PaymentService(db)
    transaction = service.get_transaction(payload.reference)
    if transaction is not None:
        ensure_customer_access(current_user, transaction.order.customer_id)
    return service.verify_payment(payload.reference)
