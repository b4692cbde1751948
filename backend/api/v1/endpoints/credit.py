from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ....core.dependencies import (
    get_db,
    get_current_user,
    get_current_staff_user,
    get_current_admin_user,
    ensure_customer_access,
)
from ....models.enums import NetTerms
from ....models.user import User
from ....schemas.credit import (
    CreditTerms,
    CreditApproval,
    CreditSuspension,
    CreditLimitAdjustment,
    CreditEligibility,
    CreditLedger,
)
from ....schemas.order import Order
from ....services.credit_service import (
    CreditService,
    serialize_credit_terms,
    calculate_due_date,
    get_due_status,
    get_net_terms_days,
    get_net_terms_label,
    get_net_terms_description,
)
from ....utils.date_utils import today as utc_today

router = APIRouter()


@router.get("/customers/{customer_id}", response_model=CreditTerms)
async def get_credit_terms(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    ensure_customer_access(current_user, customer_id)
    return serialize_credit_terms(CreditService(db).get_terms_or_404(customer_id))


@router.get("/customers/{customer_id}/eligibility", response_model=CreditEligibility)
async def check_credit_eligibility(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Whether the customer qualifies for credit terms and what is missing
    """
    ensure_customer_access(current_user, customer_id)
    return CreditService(db).check_credit_eligibility(customer_id)


@router.get("/customers/{customer_id}/ledger", response_model=CreditLedger)
async def get_credit_ledger(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    ensure_customer_access(current_user, customer_id)
    return CreditService(db).get_credit_ledger(customer_id)


@router.post("/customers/{customer_id}/approve", response_model=CreditTerms)
async def approve_credit_terms(
    customer_id: int,
    approval: CreditApproval,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    terms = CreditService(db).approve_credit_terms(
        customer_id, approval.credit_limit, approval.net_terms, approved_by=current_user.username
    )
    return serialize_credit_terms(terms)


@router.post("/customers/{customer_id}/suspend", response_model=CreditTerms)
async def suspend_credit_terms(
    customer_id: int,
    suspension: CreditSuspension,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    terms = CreditService(db).suspend_credit_terms(customer_id, suspension.reason, actor=current_user.username)
    return serialize_credit_terms(terms)


@router.post("/customers/{customer_id}/reactivate", response_model=CreditTerms)
async def reactivate_credit_terms(
    customer_id: int,
    approval: CreditApproval,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    terms = CreditService(db).reactivate_credit_terms(
        customer_id, approval.credit_limit, approval.net_terms, actor=current_user.username
    )
    return serialize_credit_terms(terms)


@router.post("/customers/{customer_id}/adjust", response_model=CreditTerms)
async def adjust_credit_limit(
    customer_id: int,
    adjustment: CreditLimitAdjustment,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    """
    Change the credit limit. The new limit cannot be below the current balance.
    """
    terms = CreditService(db).adjust_credit_limit(
        customer_id, adjustment.new_limit, adjustment.reason, actor=current_user.username
    )
    return serialize_credit_terms(terms)


@router.get("/overdue", response_model=List[Order])
async def list_overdue_credit_orders(
    customer_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return CreditService(db).overdue_credit_orders(customer_id)


# Helpers
@router.get("/helpers/due-date")
async def preview_due_date(
    net_terms: NetTerms = Query(NetTerms.NET_14),
    from_date: Optional[date] = Query(None),
    current_user: User = Depends(get_current_user)
):
    """
    Due date for a credit charge made on ``from_date`` (today by default)
    """
    from_date = from_date or utc_today()
    return {
        "net_terms": net_terms,
        "days": get_net_terms_days(net_terms),
        "label": get_net_terms_label(net_terms),
        "description": get_net_terms_description(net_terms),
        "due_date": calculate_due_date(from_date, net_terms),
    }


@router.get("/helpers/due-status")
async def preview_due_status(
    due_date: date = Query(...),
    current_user: User = Depends(get_current_user)
):
    return get_due_status(due_date)
