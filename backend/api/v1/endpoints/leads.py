from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ....core.dependencies import (
    get_db,
    get_current_staff_user,
    get_request_context,
    PaginationParams,
    RequestContext,
)
from ....models.enums import LeadStatus
from ....models.user import User
from ....schemas.base import PaginatedResponse
from ....schemas.lead import (
    Lead,
    LeadCreate,
    LeadUpdate,
    LeadSubmission,
    LeadSubmissionResult,
    LeadScore,
    RescoreResult,
)
from ....services.lead_service import LeadService

router = APIRouter()


@router.post("/submit", response_model=LeadSubmissionResult, status_code=status.HTTP_201_CREATED)
async def submit_lead(
    submission: LeadSubmission,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context)
):
    """
    Public website inquiry form. No authentication.
    """
    lead = LeadService(db).submit_lead(
        submission,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        referrer=context.referrer,
    )
    return {
        "success": True,
        "message": "Thank you for your inquiry! We'll get back to you soon.",
        "lead_id": lead.id,
    }


@router.get("/", response_model=PaginatedResponse[Lead])
async def list_leads(
    lead_status: Optional[LeadStatus] = Query(None, alias="status"),
    source: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return LeadService(db).list_leads(
        status=lead_status, source=source, search=search,
        skip=pagination.offset, limit=pagination.size,
    )


@router.post("/", response_model=Lead, status_code=status.HTTP_201_CREATED)
async def create_lead(
    lead_data: LeadCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return LeadService(db).create_lead(lead_data, actor=current_user.username)


@router.post("/rescore", response_model=RescoreResult)
async def rescore_leads(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Recalculate every lead's score
    """
    return LeadService(db).rescore_leads()


@router.get("/{lead_id}", response_model=Lead)
async def get_lead(
    lead_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return LeadService(db).get_lead(lead_id)


@router.put("/{lead_id}", response_model=Lead)
async def update_lead(
    lead_id: int,
    lead_data: LeadUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return LeadService(db).update_lead(lead_id, lead_data, actor=current_user.username)


@router.get("/{lead_id}/score", response_model=LeadScore)
async def get_lead_score(
    lead_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return LeadService(db).score_lead(lead_id)


@router.post("/{lead_id}/convert", response_model=Lead)
async def convert_lead(
    lead_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Convert the lead into a customer and close it as won
    """
    return LeadService(db).convert_lead(lead_id, actor=current_user.username)
