import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from admissions.core.config import settings
from admissions.core.exceptions import ValidationError
from admissions.core.links import build_interview_links, format_utc
from admissions.core.normalize import normalize_text
from admissions.core.security import generate_token
from admissions.database.database import ensure_pipeline_ready, transaction
from admissions.models.application_message import ApplicationMessage
from admissions.models.interview import Interview, LOCATION_TYPES
from admissions.services import admin_action_service as actions
from admissions.services.link_resolver import LinkResolver
from admissions.services.message_dispatcher import MessageDispatcher
from admissions.services.stage_machine import StageMachine, lock_program_application, project_to_linked_application

logger = logging.getLogger(__name__)


class InterviewScheduler:
    """One interview per program application; every (re)schedule issues a fresh confirm token"""

    def __init__(self, db: Session, stage_machine: Optional[StageMachine] = None):
        self.db = db
        self.stage_machine = stage_machine or StageMachine(db)

    def _upsert_interview(
        self,
        program_application_id: int,
        linked_application_id: Optional[int],
        values: Dict[str, Any],
        actor_user_id: Optional[int] = None,
    ) -> Interview:
        interview = (
            self.db.query(Interview)
            .filter(Interview.program_application_id == program_application_id)
            .order_by(Interview.id.desc())
            .first()
        )

        if interview is None and linked_application_id:
            # orphan interview created against the cohort application; never take another program application's
            interview = (
                self.db.query(Interview)
                .filter(
                    Interview.application_id == linked_application_id,
                    Interview.program_application_id.is_(None),
                )
                .order_by(Interview.id.desc())
                .first()
            )
            if interview is not None:
                interview.program_application_id = program_application_id

        if interview is None:
            interview = Interview(program_application_id=program_application_id)
            self.db.add(interview)

        if interview.application_id is None and linked_application_id:
            claimed = (
                self.db.query(Interview.id)
                .filter(Interview.application_id == linked_application_id)
            )
            if interview.id is not None:
                claimed = claimed.filter(Interview.id != interview.id)
            if claimed.first() is None:
                interview.application_id = linked_application_id

        if interview.created_by is None:
            interview.created_by = actor_user_id

        for key, value in values.items():
            setattr(interview, key, value)

        # a new invitation: clear whatever the applicant answered to the previous one
        interview.status = "pending_confirmation"
        interview.confirmed_at = None
        interview.requested_at = None
        interview.applicant_response_note = None

        self.db.flush()
        return interview

    def schedule(
        self,
        program_application_id: int,
        scheduled_at: datetime,
        duration_minutes: Optional[int] = None,
        location_type: str = "online",
        location_details: Optional[str] = None,
        email: bool = False,
        whatsapp: bool = False,
        actor_user_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        if location_type not in LOCATION_TYPES:
            raise ValidationError(f"Invalid location_type '{location_type}'.", details={"allowed": list(LOCATION_TYPES)})
        if scheduled_at.tzinfo is None:
            scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)

        with transaction(self.db):
            ensure_pipeline_ready(self.db)
            program_application = lock_program_application(self.db, program_application_id)
            applicant = program_application.applicant
            to_email = (applicant.email if applicant else None) or program_application.applicant_email_norm
            to_phone = (applicant.phone if applicant else None) or program_application.applicant_phone_norm

            # checked before anything is written
            if email and not to_email:
                raise ValidationError("Applicant email is required to create an email draft.")
            if whatsapp and not to_phone:
                raise ValidationError("Applicant phone is required to create a WhatsApp draft.")

            linked_id = LinkResolver(self.db).ensure_linked_application_id(program_application_id)
            confirm_token = generate_token()
            interview = self._upsert_interview(
                program_application_id,
                linked_id,
                {
                    "scheduled_at": scheduled_at,
                    "duration_minutes": duration_minutes or settings.default_interview_minutes,
                    "location_type": location_type,
                    "location_details": normalize_text(location_details),
                    "confirm_token": confirm_token,
                },
                actor_user_id=actor_user_id,
            )

            previous_stage = program_application.stage
            self.stage_machine.transition(program_application, "invited_to_interview", actor_user_id, keep_review_message=True)
            linked_id = project_to_linked_application(self.db, program_application) or linked_id

            links = build_interview_links(confirm_token)
            when = format_utc(scheduled_at)
            details = interview.location_details or "-"
            name = (applicant.full_name if applicant else None) or "Applicant"
            dispatcher = MessageDispatcher(self.db)
            drafts: List[ApplicationMessage] = []

            if email:
                drafts.append(dispatcher.create_draft(
                    program_application,
                    channel="email",
                    to_value=to_email,
                    subject="Interview Invitation",
                    body=(
                        f"Dear {name},\n\n"
                        f"Your interview has been scheduled on {when}.\n"
                        f"Duration: {interview.duration_minutes} minutes\n"
                        f"Location Type: {interview.location_type}\n"
                        f"Location Details: {details}\n"
                        f"Application ID: {program_application_id}\n"
                        f"Confirm Token: {confirm_token}\n"
                        f"Confirm here: {links['confirm_url']}\n"
                        f"Reschedule here: {links['reschedule_url']}\n\n"
                        "Best regards,\nAdmissions Team"
                    ),
                    template_key="interview_scheduling",
                    actor_user_id=actor_user_id,
                    linked_application_id=linked_id,
                ))

            if whatsapp:
                drafts.append(dispatcher.create_draft(
                    program_application,
                    channel="whatsapp",
                    to_value=to_phone,
                    subject=None,
                    body=(
                        f"Interview: {when} | {interview.location_type} | {details} | "
                        f"App#{program_application_id} | Token:{confirm_token} | "
                        f"Confirm: {links['confirm_url']} | Reschedule: {links['reschedule_url']}"
                    ),
                    template_key="interview_scheduling",
                    actor_user_id=actor_user_id,
                    linked_application_id=linked_id,
                ))

            actions.log_admin_action(
                self.db,
                actions.INTERVIEW_SCHEDULED,
                "program_applications",
                program_application_id,
                f"Interview scheduled for program application {program_application_id}.",
                actor_user_id=actor_user_id,
                details={
                    "interview_id": interview.id,
                    "scheduled_at": scheduled_at.isoformat(),
                    "from_stage": previous_stage,
                    "draft_ids": [draft.id for draft in drafts],
                },
            )

        self.db.refresh(program_application)
        self.db.refresh(interview)
        return {
            "program_application": program_application,
            "interview": interview,
            "links": links,
            "message_drafts": drafts,
        }
