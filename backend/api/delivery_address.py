"""
Customer-facing page for supplying an order's delivery address from an emailed link.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Form, Query, status
from fastapi.responses import HTMLResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..config.logging import get_logger, log_security_event
from ..core.dependencies import get_db, get_request_context, RequestContext
from ..core.exceptions import InvalidMagicLinkError
from ..core.security import SecurityEvent
from ..schemas.customer import CustomerAddressCreate
from ..services.delivery_address_service import DeliveryAddressService, one_line_address
from ..utils.html_pages import render_address_form_page, render_result_page

logger = get_logger(__name__)

router = APIRouter()


def _error_page(title: str, message: str) -> HTMLResponse:
    logger.info(f"Delivery address page error: {title}")
    return HTMLResponse(render_result_page(title, message, success=False), status_code=status.HTTP_400_BAD_REQUEST)


@router.get("/delivery-address", response_class=HTMLResponse)
async def delivery_address_page(
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context)
):
    try:
        link = DeliveryAddressService(db).resolve_address_token(token)
    except InvalidMagicLinkError as e:
        log_security_event(SecurityEvent.MAGIC_LINK_REJECTED, details=e.title, ip_address=context.ip_address)
        return _error_page(e.title, e.detail)
    return HTMLResponse(render_address_form_page(link.order, token))


@router.post("/delivery-address", response_class=HTMLResponse)
async def submit_delivery_address(
    token: str = Form(...),
    street_address: str = Form(""),
    city: str = Form(""),
    recipient_name: Optional[str] = Form(None),
    phone: Optional[str] = Form(None),
    region: Optional[str] = Form(None),
    digital_address: Optional[str] = Form(None),
    is_default: bool = Form(False),
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context)
):
    try:
        address = CustomerAddressCreate(
            label="Delivery",
            recipient_name=recipient_name or None,
            phone=phone or None,
            street_address=street_address.strip(),
            city=city.strip(),
            region=region or None,
            digital_address=digital_address or None,
            is_default=is_default,
        )
    except ValidationError:
        return _error_page("Invalid Address", "Street address and city are required.")

    try:
        DeliveryAddressService(db).confirm_delivery_address(token, address, ip_address=context.ip_address)
    except InvalidMagicLinkError as e:
        log_security_event(SecurityEvent.MAGIC_LINK_REJECTED, details=e.title, ip_address=context.ip_address)
        return _error_page(e.title, e.detail)

    return HTMLResponse(render_result_page(
        "Address Confirmed",
        f"Thank you. We will deliver to {one_line_address(address)}.",
    ))
