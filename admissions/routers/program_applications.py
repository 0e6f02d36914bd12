from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from admissions.database.database import get_db
from admissions.schemas.program_application import (
    DecisionCreate,
    InterviewResponse,
    InterviewSchedule,
    MessageCreate,
    MessageResponse,
    ParticipationConfirm,
    ProgramApplicationDetail,
    ProgramApplicationResponse,
    StagePatch,
)
from admissions.services.channel_service import ChannelRegistry, get_channel_registry
from admissions.services.interview_scheduler import InterviewScheduler
from admissions.services.message_dispatcher import MessageDispatcher
from admissions.services.participation_service import ParticipationConfirmer
from admissions.services.program_application_service import ProgramApplicationService
from admissions.services.stage_machine import StageMachine
from admissions.services.user_provisioner import UserProvisioner

router = APIRouter(prefix="/program-applications")


def get_actor_user_id(x_actor_user_id: Optional[int] = Header(None)) -> Optional[int]:
    """Acting admin id; authentication happens upstream"""
    return x_actor_user_id


def _message(message) -> dict:
    return MessageResponse.model_validate(message).model_dump()


def _program_application(program_application) -> dict:
    return ProgramApplicationResponse.model_validate(program_application).model_dump()


def _interview(interview) -> Optional[dict]:
    return InterviewResponse.model_validate(interview).model_dump() if interview else None


@router.get("")
async def list_program_applications(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("created_at", alias="sortBy"),
    order: str = Query("desc"),
    stage: Optional[str] = None,
    status: Optional[str] = None,
    program_id: Optional[int] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Program application list (paginated)"""
    service = ProgramApplicationService(db)
    result = service.list_program_applications(
        page=page,
        limit=limit,
        sort_by=sort_by,
        order=order,
        stage=stage or status,
        program_id=program_id,
        search=search,
    )
    return {
        "status": 200,
        "success": True,
        "data": [_program_application(row) for row in result["items"]],
        "pagination": result["pagination"],
    }


@router.post("/messages/{message_id}/retry")
def retry_message(
    message_id: int,
    db: Session = Depends(get_db),
    channels: ChannelRegistry = Depends(get_channel_registry),
    actor_user_id: Optional[int] = Depends(get_actor_user_id),
):
    message = MessageDispatcher(db, channels).retry(message_id, actor_user_id=actor_user_id)
    return {"status": 200, "success": True, "message": f"Message {message.status}", "data": _message(message)}


@router.get("/{program_application_id}")
async def get_program_application(program_application_id: int, db: Session = Depends(get_db)):
    """Detail with applicant, program, interview and message history"""
    detail = ProgramApplicationService(db).get_detail(program_application_id)
    return {
        "status": 200,
        "success": True,
        "data": ProgramApplicationDetail.model_validate(detail, from_attributes=True).model_dump(),
    }


@router.patch("/{program_application_id}/stage")
async def patch_stage(
    program_application_id: int,
    payload: StagePatch,
    db: Session = Depends(get_db),
    actor_user_id: Optional[int] = Depends(get_actor_user_id),
):
    program_application = StageMachine(db).patch_stage(
        program_application_id,
        payload.next_stage,
        review_message=payload.review_message,
        actor_user_id=actor_user_id,
    )
    return {"status": 200, "success": True, "data": _program_application(program_application)}


@router.post("/{program_application_id}/interview/schedule")
async def schedule_interview(
    program_application_id: int,
    payload: InterviewSchedule,
    db: Session = Depends(get_db),
    actor_user_id: Optional[int] = Depends(get_actor_user_id),
):
    result = InterviewScheduler(db).schedule(
        program_application_id,
        scheduled_at=payload.scheduled_at,
        duration_minutes=payload.duration_minutes,
        location_type=payload.location_type,
        location_details=payload.location_details,
        email=payload.channels.email,
        whatsapp=payload.channels.wants_whatsapp,
        actor_user_id=actor_user_id,
    )
    return {
        "status": 200,
        "success": True,
        "data": {
            "program_application": _program_application(result["program_application"]),
            "interview": _interview(result["interview"]),
            "links": result["links"],
            "message_drafts": [_message(m) for m in result["message_drafts"]],
        },
    }


@router.post("/{program_application_id}/interview/mark-completed")
async def mark_interview_completed(
    program_application_id: int,
    db: Session = Depends(get_db),
    actor_user_id: Optional[int] = Depends(get_actor_user_id),
):
    result = StageMachine(db).mark_completed(program_application_id, actor_user_id=actor_user_id)
    return {
        "status": 200,
        "success": True,
        "data": {
            "program_application": _program_application(result["program_application"]),
            "interview": _interview(result["interview"]),
        },
    }


@router.get("/{program_application_id}/messages")
async def list_messages(program_application_id: int, db: Session = Depends(get_db)):
    messages = MessageDispatcher(db).list_messages(program_application_id)
    return {"status": 200, "success": True, "data": [_message(m) for m in messages]}


@router.post("/{program_application_id}/messages", status_code=201)
def create_message(
    program_application_id: int,
    payload: MessageCreate,
    db: Session = Depends(get_db),
    channels: ChannelRegistry = Depends(get_channel_registry),
    actor_user_id: Optional[int] = Depends(get_actor_user_id),
):
    message = MessageDispatcher(db, channels).create_message(
        program_application_id,
        channel=payload.channel,
        body=payload.body,
        subject=payload.subject,
        to_value=payload.to_value,
        template_key=payload.template_key,
        send_now=payload.send_now,
        actor_user_id=actor_user_id,
    )
    return {"status": 201, "success": True, "data": _message(message)}


@router.post("/{program_application_id}/messages/{message_id}/send")
def send_message(
    program_application_id: int,
    message_id: int,
    db: Session = Depends(get_db),
    channels: ChannelRegistry = Depends(get_channel_registry),
    actor_user_id: Optional[int] = Depends(get_actor_user_id),
):
    message = MessageDispatcher(db, channels).send(program_application_id, message_id, actor_user_id=actor_user_id)
    return {"status": 200, "success": True, "message": f"Message {message.status}", "data": _message(message)}


@router.post("/{program_application_id}/decision")
async def record_decision(
    program_application_id: int,
    payload: DecisionCreate,
    db: Session = Depends(get_db),
    actor_user_id: Optional[int] = Depends(get_actor_user_id),
):
    result = StageMachine(db).decide(
        program_application_id,
        payload.decision,
        email=payload.channels.email,
        whatsapp=payload.channels.wants_whatsapp,
        message_override=payload.message_override,
        actor_user_id=actor_user_id,
    )
    return {
        "status": 200,
        "success": True,
        "data": {
            "program_application": _program_application(result["program_application"]),
            "message_drafts": [_message(m) for m in result["message_drafts"]],
        },
    }


@router.post("/{program_application_id}/participation/confirm")
async def confirm_participation(
    program_application_id: int,
    payload: Optional[ParticipationConfirm] = None,
    db: Session = Depends(get_db),
    actor_user_id: Optional[int] = Depends(get_actor_user_id),
):
    note = payload.note if payload else None
    program_application = ParticipationConfirmer(db).confirm(program_application_id, note, actor_user_id=actor_user_id)
    return {"status": 200, "success": True, "data": _program_application(program_application)}


@router.post("/{program_application_id}/create-user")
def create_user(
    program_application_id: int,
    db: Session = Depends(get_db),
    channels: ChannelRegistry = Depends(get_channel_registry),
    actor_user_id: Optional[int] = Depends(get_actor_user_id),
):
    provisioner = UserProvisioner(db, MessageDispatcher(db, channels))
    result = provisioner.create_user_from_application(program_application_id, actor_user_id=actor_user_id)
    enrollment = result["enrollment"]
    credentials = result["credentials"]
    return {
        "status": 200,
        "success": True,
        "data": {
            "program_application": _program_application(result["program_application"]),
            "user_id": result["user_id"],
            "created": result["created"],
            "generated_password": result["generated_password"],
            "enrollment": {
                "id": enrollment.id,
                "cohort_id": enrollment.cohort_id,
                "status": enrollment.status,
            } if enrollment else None,
            "credentials": {
                "skipped": credentials["skipped"],
                "reason": credentials["reason"],
                "message": _message(credentials["message"]) if credentials["message"] else None,
            },
        },
    }
