"""
Order and credit ledger reports.

Rows are built as flat dicts and exported as json, csv, excel or pdf.
"""
import io
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from sqlalchemy.orm import Session

from ..config.logging import get_logger, log_performance
from ..core.exceptions import InvalidDateRangeError
from ..models.credit import CreditLedgerEntry
from ..models.customer import Customer
from ..models.enums import OrderStatus, PaymentStatus
from ..models.order import Order
from ..utils.date_utils import format_date, today as utc_today
from ..utils.pdf_utils import render_table_pdf
from .order_status import get_status_label

logger = get_logger(__name__)

REPORT_FORMATS = ("json", "csv", "excel", "pdf")
MEDIA_TYPES = {
    "csv": "text/csv",
    "excel": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pdf": "application/pdf",
}
EXTENSIONS = {"csv": "csv", "excel": "xlsx", "pdf": "pdf"}


def resolve_period(start_date: Optional[date], end_date: Optional[date], days: int = 30) -> Tuple[date, date]:
    end_date = end_date or utc_today()
    start_date = start_date or end_date - timedelta(days=days)
    if start_date > end_date:
        raise InvalidDateRangeError(str(start_date), str(end_date))
    return start_date, end_date


def export_rows(rows: List[Dict[str, Any]], fmt: str, title: str, summary: Dict[str, Any] = None) -> bytes:
    """Serialize report rows as csv, excel or pdf bytes"""
    if fmt == "pdf":
        return render_table_pdf(title, rows, summary)

    df = pd.DataFrame(rows)
    if fmt == "csv":
        return df.to_csv(index=False).encode("utf-8")
    if fmt == "excel":
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="Report", index=False)
            if summary:
                pd.DataFrame(
                    [{"Metric": key, "Value": value} for key, value in summary.items()]
                ).to_excel(writer, sheet_name="Summary", index=False)
        return buffer.getvalue()
    raise ValueError(f"Unsupported report format: {fmt}")


def report_filename(prefix: str, fmt: str, start_date: date = None, end_date: date = None) -> str:
    suffix = f"_{start_date:%Y%m%d}_{end_date:%Y%m%d}" if start_date and end_date else f"_{datetime.utcnow():%Y%m%d}"
    return f"{prefix}{suffix}.{EXTENSIONS[fmt]}"


class ReportService:
    def __init__(self, db: Session):
        self.db = db

    @log_performance("reports")
    def orders_report(self, start_date: date = None, end_date: date = None, status: OrderStatus = None,
                      customer_id: int = None) -> Dict[str, Any]:
        start_date, end_date = resolve_period(start_date, end_date)
        query = self.db.query(Order, Customer).join(Customer, Order.customer_id == Customer.id).filter(
            Order.is_deleted == False,  # noqa: E712
            Order.created_at >= datetime.combine(start_date, datetime.min.time()),
            Order.created_at < datetime.combine(end_date + timedelta(days=1), datetime.min.time()),
        )
        if status:
            query = query.filter(Order.status == status)
        if customer_id:
            query = query.filter(Order.customer_id == customer_id)

        rows = []
        by_currency: Dict[str, float] = {}
        for order, customer in query.order_by(Order.created_at.desc()).all():
            rows.append({
                "Order Number": order.order_number,
                "Date": format_date(order.created_at),
                "Customer Code": customer.customer_code,
                "Customer": customer.company_name,
                "Status": get_status_label(order.status, customer_facing=False),
                "Payment Status": str(order.payment_status),
                "Currency": order.currency,
                "Total": round(order.total_amount or 0, 2),
                "Paid": round(order.amount_paid or 0, 2),
                "Balance": round(order.balance_remaining or 0, 2),
                "On Credit": "yes" if order.is_on_credit else "no",
            })
            if order.status != OrderStatus.CANCELLED:
                by_currency[order.currency] = round(by_currency.get(order.currency, 0) + (order.total_amount or 0), 2)

        settled = {str(PaymentStatus.FULLY_PAID), str(PaymentStatus.OVERPAID)}
        unpaid = sum(1 for row in rows if row["Payment Status"] not in settled)
        summary = {
            "report_period": f"{start_date} to {end_date}",
            "total_orders": len(rows),
            "unpaid_orders": unpaid,
            "order_value": ", ".join(f"{cur} {value:,.2f}" for cur, value in sorted(by_currency.items())) or "0",
        }
        return {"summary": summary, "data": rows, "start_date": start_date, "end_date": end_date}

    def credit_ledger_report(self, customer_id: int = None, start_date: date = None,
                             end_date: date = None) -> Dict[str, Any]:
        start_date, end_date = resolve_period(start_date, end_date, days=90)
        query = self.db.query(CreditLedgerEntry, Customer).join(
            Customer, CreditLedgerEntry.customer_id == Customer.id
        ).filter(
            CreditLedgerEntry.created_at >= datetime.combine(start_date, datetime.min.time()),
            CreditLedgerEntry.created_at < datetime.combine(end_date + timedelta(days=1), datetime.min.time()),
        )
        if customer_id:
            query = query.filter(CreditLedgerEntry.customer_id == customer_id)

        rows = []
        for entry, customer in query.order_by(CreditLedgerEntry.created_at, CreditLedgerEntry.id).all():
            rows.append({
                "Date": format_date(entry.created_at, "datetime"),
                "Customer Code": customer.customer_code,
                "Customer": customer.company_name,
                "Type": str(entry.entry_type),
                "Amount": round(entry.amount, 2),
                "Balance After": round(entry.balance_after, 2),
                "Order": entry.order.order_number if entry.order else "",
                "Notes": entry.notes or "",
            })

        summary = {
            "report_period": f"{start_date} to {end_date}",
            "entries": len(rows),
            "charged": round(sum(r["Amount"] for r in rows if r["Type"] == "charge"), 2),
            "repaid": round(sum(r["Amount"] for r in rows if r["Type"] in ("payment", "release")), 2),
        }
        return {"summary": summary, "data": rows, "start_date": start_date, "end_date": end_date}
