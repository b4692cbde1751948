"""
Human-readable document numbers (quotes, orders, invoices, customers).
"""
import secrets
from datetime import datetime

QUOTE_PREFIX = "QT"
ORDER_PREFIX = "ORD"
CUSTOMER_PREFIX = "CUS"
PAYMENT_PREFIX = "PAY"
INVOICE_PREFIXES = {
    "proforma": "PI",
    "commercial": "INV",
    "packing_list": "PL",
}


def generate_reference(prefix: str, when: datetime = None) -> str:
    """e.g. ``ORD-202610-4F2A9C``"""
    when = when or datetime.utcnow()
    return f"{prefix}-{when:%Y%m}-{secrets.token_hex(3).upper()}"


def invoice_prefix(invoice_type) -> str:
    return INVOICE_PREFIXES[str(invoice_type)]
