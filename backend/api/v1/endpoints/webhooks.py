from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ....config.logging import get_logger
from ....core.dependencies import get_db, get_request_context, RequestContext
from ....services.payment_service import PaymentService

logger = get_logger(__name__)

router = APIRouter()


@router.post("/paystack")
async def paystack_webhook(
    request: Request,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context)
):
    """
    Paystack event receiver. The signature covers the raw body, so it is
    read before any JSON parsing.
    """
    raw_body = await request.body()
    signature = request.headers.get("x-paystack-signature")
    try:
        PaymentService(db).process_webhook(raw_body, signature, ip_address=context.ip_address)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.exception(f"Webhook processing error: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": True, "error_code": "WEBHOOK_ERROR", "message": str(e),
                     "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR},
        )
    return {"received": True}
