from pydantic import BaseModel, EmailStr, Field, model_validator
from typing import Optional, Dict, Any, List, Literal
from datetime import datetime

Stage = Literal[
    "applied",
    "reviewing",
    "invited_to_interview",
    "interview_confirmed",
    "accepted",
    "rejected",
    "participation_confirmed",
]

class ChannelSelection(BaseModel):
    email: bool = False
    sms: bool = False
    whatsapp: bool = False

    @property
    def wants_whatsapp(self) -> bool:
        # sms and whatsapp both go out over WhatsApp
        return self.sms or self.whatsapp

class StagePatch(BaseModel):
    stage: Optional[Stage] = None
    status: Optional[Stage] = None
    review_message: Optional[str] = None

    @model_validator(mode="after")
    def _require_stage(self):
        if self.stage is None and self.status is None:
            raise ValueError("stage (or status) is required")
        return self

    @property
    def next_stage(self) -> str:
        return self.stage or self.status

class InterviewSchedule(BaseModel):
    scheduled_at: datetime
    duration_minutes: Optional[int] = Field(default=None, ge=1, le=600)
    location_type: Literal["online", "in_person", "phone"] = "online"
    location_details: Optional[str] = None
    channels: ChannelSelection = Field(default_factory=ChannelSelection)

class MessageCreate(BaseModel):
    channel: Literal["email", "sms", "whatsapp"]
    to_value: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    template_key: Optional[str] = None
    send_now: bool = Field(default=False, alias="sendNow")

    model_config = {"populate_by_name": True}

class DecisionCreate(BaseModel):
    decision: Literal["accepted", "rejected"]
    channels: ChannelSelection = Field(default_factory=ChannelSelection)
    message_override: Optional[str] = Field(default=None, alias="messageOverride")

    model_config = {"populate_by_name": True}

class ParticipationConfirm(BaseModel):
    note: Optional[str] = None

class ApplicationSubmit(BaseModel):
    full_name: str = Field(min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    cohort_id: Optional[int] = None
    answers: Dict[str, Any] = Field(default_factory=dict)

class InterviewConfirmRequest(BaseModel):
    note: Optional[str] = None

class InterviewRescheduleRequest(BaseModel):
    requested_at: Optional[datetime] = None
    note: Optional[str] = None

# Responses

class ApplicantResponse(BaseModel):
    id: int
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None

    class Config:
        from_attributes = True

class ProgramApplicationResponse(BaseModel):
    id: int
    program_id: int
    cohort_id: Optional[int] = None
    applicant_id: Optional[int] = None
    applicant_email_norm: Optional[str] = None
    applicant_phone_norm: Optional[str] = None
    submission_answers: Optional[Dict[str, Any]] = None
    stage: str
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    review_message: Optional[str] = None
    participation_confirmed_at: Optional[datetime] = None
    participation_note: Optional[str] = None
    created_user_id: Optional[int] = None
    user_created_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class InterviewResponse(BaseModel):
    id: int
    program_application_id: Optional[int] = None
    application_id: Optional[int] = None
    scheduled_at: datetime
    duration_minutes: int
    location_type: str
    location_details: Optional[str] = None
    status: str
    confirm_token: Optional[str] = None
    applicant_response_note: Optional[str] = None
    requested_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class MessageResponse(BaseModel):
    id: int
    application_id: int
    program_application_id: Optional[int] = None
    channel: str
    provider: str
    to_value: str
    subject: Optional[str] = None
    body: str
    template_key: Optional[str] = None
    status: str
    sent_at: Optional[datetime] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    # the ORM attribute is `meta`, the column and the API field are `metadata`
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="meta")

    class Config:
        from_attributes = True

class ProgramSummary(BaseModel):
    id: int
    slug: str
    title: str

    class Config:
        from_attributes = True


class ProgramApplicationDetail(BaseModel):
    program_application: ProgramApplicationResponse
    applicant: Optional[ApplicantResponse] = None
    program: Optional[ProgramSummary] = None
    linked_application_id: Optional[int] = None
    interview: Optional[InterviewResponse] = None
    messages: List[MessageResponse] = []
