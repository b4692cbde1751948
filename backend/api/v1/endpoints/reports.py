from typing import Optional
from datetime import date
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ....core.dependencies import get_db, get_current_staff_user
from ....models.enums import OrderStatus
from ....models.user import User
from ....services.report_service import ReportService, export_rows, report_filename, MEDIA_TYPES

router = APIRouter()


def _export(report: dict, fmt: str, title: str, prefix: str):
    if fmt == "json":
        return {"summary": report["summary"], "data": report["data"]}
    content = export_rows(report["data"], fmt, title, report["summary"])
    filename = report_filename(prefix, fmt, report["start_date"], report["end_date"])
    return Response(
        content=content,
        media_type=MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/orders")
def generate_orders_report(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    customer_id: Optional[int] = Query(None),
    format: str = Query("json", pattern="^(json|csv|excel|pdf)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """Orders placed in the period with payment position, last 30 days by default"""
    report = ReportService(db).orders_report(start_date, end_date, order_status, customer_id)
    return _export(report, format, "Orders Report", "orders_report")


@router.get("/credit-ledger")
def generate_credit_ledger_report(
    customer_id: Optional[int] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    format: str = Query("json", pattern="^(json|csv|excel|pdf)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """Credit charges, payments and adjustments, last 90 days by default"""
    report = ReportService(db).credit_ledger_report(customer_id, start_date, end_date)
    return _export(report, format, "Credit Ledger Report", "credit_ledger")
