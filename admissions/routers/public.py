from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from admissions.database.database import get_db
from admissions.schemas.program_application import (
    ApplicationSubmit,
    InterviewConfirmRequest,
    InterviewRescheduleRequest,
    InterviewResponse,
    ParticipationConfirm,
    ProgramApplicationResponse,
)
from admissions.services.public_link_service import PublicLinkService
from admissions.services.submission_service import ApplicationSubmissionService, FormFieldProvider, StaticFormFieldProvider

router = APIRouter(prefix="/public")


def get_form_field_provider() -> FormFieldProvider:
    return StaticFormFieldProvider()


def _public_interview(interview) -> dict:
    data = InterviewResponse.model_validate(interview).model_dump()
    # the token is the applicant's credential; do not echo it back
    data.pop("confirm_token", None)
    return data


@router.post("/programs/{program_id}/apply", status_code=201)
async def apply_to_program(
    program_id: int,
    payload: ApplicationSubmit,
    db: Session = Depends(get_db),
    form_fields: FormFieldProvider = Depends(get_form_field_provider),
):
    """Public program application form"""
    service = ApplicationSubmissionService(db, form_fields)
    program_application = service.submit(
        program_id,
        full_name=payload.full_name,
        email=payload.email,
        phone=payload.phone,
        cohort_id=payload.cohort_id,
        answers=payload.answers,
    )
    return {
        "status": 201,
        "success": True,
        "message": "Application submitted",
        "data": ProgramApplicationResponse.model_validate(program_application).model_dump(
            include={"id", "program_id", "cohort_id", "stage", "created_at"}
        ),
    }


@router.post("/interviews/{token}/confirm")
async def confirm_interview(
    token: str,
    payload: Optional[InterviewConfirmRequest] = None,
    db: Session = Depends(get_db),
):
    interview = PublicLinkService(db).confirm_interview(token, payload.note if payload else None)
    return {"status": 200, "success": True, "message": "Interview confirmed", "data": _public_interview(interview)}


@router.post("/interviews/{token}/reschedule")
async def request_reschedule(
    token: str,
    payload: Optional[InterviewRescheduleRequest] = None,
    db: Session = Depends(get_db),
):
    interview = PublicLinkService(db).request_reschedule(
        token,
        requested_at=payload.requested_at if payload else None,
        note=payload.note if payload else None,
    )
    return {"status": 200, "success": True, "message": "Reschedule requested", "data": _public_interview(interview)}


@router.post("/participation/{token}/confirm")
async def confirm_participation(
    token: str,
    payload: Optional[ParticipationConfirm] = None,
    db: Session = Depends(get_db),
):
    result = PublicLinkService(db).confirm_participation(token, payload.note if payload else None)
    return {"status": 200, "success": True, "message": "Participation confirmed", "data": result}
