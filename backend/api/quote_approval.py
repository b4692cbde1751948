"""
Customer-facing quote approval pages reached from the emailed magic link.

Served outside the API prefix and rendered as HTML, errors included.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Form, Query, status
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from ..config.logging import get_logger, log_security_event
from ..core.dependencies import get_db, get_request_context, RequestContext
from ..core.exceptions import BadRequestError, InvalidMagicLinkError
from ..core.security import SecurityEvent
from ..models.enums import QuoteStatus
from ..services.quote_service import QuoteService, APPROVAL_ACTIONS
from ..utils.html_pages import render_choice_page, render_form_page, render_result_page

logger = get_logger(__name__)

router = APIRouter()


def _error_page(title: str, message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> HTMLResponse:
    logger.info(f"Quote approval page error: {title}")
    return HTMLResponse(render_result_page(title, message, success=False), status_code=status_code)


@router.get("/quote-approval", response_class=HTMLResponse)
async def quote_approval_page(
    token: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context)
):
    if action is not None and action not in APPROVAL_ACTIONS:
        return _error_page("Invalid Action", "The requested action is not recognised.")
    try:
        link = QuoteService(db).resolve_approval_token(token)
    except InvalidMagicLinkError as e:
        log_security_event(SecurityEvent.MAGIC_LINK_REJECTED, details=e.title, ip_address=context.ip_address)
        return _error_page(e.title, e.detail)

    quote = link.quote
    if quote.status != QuoteStatus.SENT:
        return _error_page("Already Processed", f"Quote {quote.quote_number} has already been processed. Thank you!")
    if action is None:
        return HTMLResponse(render_choice_page(quote, token))
    return HTMLResponse(render_form_page(quote, token, action))


@router.post("/quote-approval", response_class=HTMLResponse)
async def submit_quote_decision(
    token: str = Form(...),
    action: str = Form(...),
    notes: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context)
):
    try:
        approval = QuoteService(db).record_customer_decision(
            token, action, notes=notes,
            ip_address=context.ip_address, user_agent=context.user_agent,
        )
    except InvalidMagicLinkError as e:
        log_security_event(SecurityEvent.MAGIC_LINK_REJECTED, details=e.title, ip_address=context.ip_address)
        return _error_page(e.title, e.detail)
    except BadRequestError as e:
        return _error_page("Invalid Request", e.detail)

    quote_number = approval.quote.quote_number
    if action == "approve":
        return HTMLResponse(render_result_page(
            "Quote Approved!",
            f"Thank you for approving quote {quote_number}. We will be in touch shortly with next steps.",
        ))
    return HTMLResponse(render_result_page(
        "Quote Declined",
        f"Quote {quote_number} has been declined. Thank you for letting us know.",
        success=False,
    ))
