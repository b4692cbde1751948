"""
PDF rendering with ReportLab platypus for invoices and tabular reports.
"""
import io
from typing import Any, Dict, List, Sequence

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from .date_utils import format_date

HEADER_STYLE = TableStyle([
    ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#1f3b57')),
    ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
    ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
    ('FONTSIZE', (0, 0), (-1, -1), 9),
    ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
    ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
    ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
    ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#f2f4f7')]),
])

INVOICE_TITLES = {
    "proforma": "Proforma Invoice",
    "commercial": "Commercial Invoice",
    "packing_list": "Packing List",
}


def _money(value) -> str:
    return f"{(value or 0):,.2f}"


def render_invoice_pdf(invoice) -> bytes:
    """Render an invoice, proforma invoice or packing list."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, topMargin=0.6 * inch, bottomMargin=0.6 * inch)
    styles = getSampleStyleSheet()
    invoice_type = str(invoice.invoice_type)
    is_packing_list = invoice_type == "packing_list"

    story = [
        Paragraph(f"{INVOICE_TITLES[invoice_type]} {invoice.invoice_number}", styles['Title']),
        Spacer(1, 0.15 * inch),
    ]

    customer = invoice.customer
    details = [
        f"<b>Customer:</b> {customer.company_name if customer else ''}",
        f"<b>Issue date:</b> {format_date(invoice.issue_date)}",
    ]
    if invoice.due_date:
        details.append(f"<b>Due date:</b> {format_date(invoice.due_date)}")
    if invoice.payment_terms:
        details.append(f"<b>Payment terms:</b> {invoice.payment_terms}")
    if invoice.order is not None:
        details.append(f"<b>Order:</b> {invoice.order.order_number}")
    for line in details:
        story.append(Paragraph(line, styles['Normal']))
    story.append(Spacer(1, 0.25 * inch))

    if is_packing_list:
        rows = [["Product", "Description", "Quantity", "Unit"]]
        for item in invoice.items:
            rows.append([item.product_name, item.description or "", f"{item.quantity:g}", item.unit or ""])
    else:
        rows = [["Product", "Quantity", "Unit", f"Unit price ({invoice.currency})", f"Total ({invoice.currency})"]]
        for item in invoice.items:
            rows.append([
                item.product_name, f"{item.quantity:g}", item.unit or "",
                _money(item.unit_price), _money(item.line_total),
            ])

    table = Table(rows, repeatRows=1)
    table.setStyle(HEADER_STYLE)
    story.append(table)

    if not is_packing_list:
        story.append(Spacer(1, 0.2 * inch))
        story.append(Paragraph(f"<b>Subtotal:</b> {invoice.currency} {_money(invoice.subtotal)}", styles['Normal']))
        if invoice.tax_amount:
            story.append(Paragraph(f"<b>Tax:</b> {invoice.currency} {_money(invoice.tax_amount)}", styles['Normal']))
        story.append(Paragraph(f"<b>Total:</b> {invoice.currency} {_money(invoice.total_amount)}", styles['Heading3']))

    if invoice.notes:
        story.append(Spacer(1, 0.2 * inch))
        story.append(Paragraph(invoice.notes, styles['Italic']))

    doc.build(story)
    return buffer.getvalue()


def render_table_pdf(title: str, rows: List[Dict[str, Any]], summary: Dict[str, Any] = None,
                     columns: Sequence[str] = None) -> bytes:
    """Render a list of flat dicts as a landscape table report."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=landscape(A4))
    styles = getSampleStyleSheet()
    story = [Paragraph(title, styles['Title']), Spacer(1, 0.2 * inch)]

    for key, value in (summary or {}).items():
        story.append(Paragraph(f"<b>{key.replace('_', ' ').title()}:</b> {value}", styles['Normal']))
    if summary:
        story.append(Spacer(1, 0.2 * inch))

    columns = list(columns or (rows[0].keys() if rows else []))
    if columns:
        data = [columns] + [["" if row.get(col) is None else str(row.get(col)) for col in columns] for row in rows]
        table = Table(data, repeatRows=1)
        table.setStyle(HEADER_STYLE)
        story.append(table)
    else:
        story.append(Paragraph("No data for the selected period.", styles['Normal']))

    doc.build(story)
    return buffer.getvalue()
