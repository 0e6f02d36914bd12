import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from admissions.core.exceptions import NotFoundError, ValidationError
from admissions.core.normalize import normalize_text
from admissions.database.database import ensure_pipeline_ready, transaction, update_columns
from admissions.models.application import Application
from admissions.models.application_message import ApplicationMessage
from admissions.models.interview import Interview
from admissions.models.program_application import ProgramApplication, STAGES
from admissions.services import admin_action_service as actions
from admissions.services.link_resolver import LinkResolver
from admissions.services.message_dispatcher import MessageDispatcher

logger = logging.getLogger(__name__)

# Columns the mirrored projection may write on a cohort Application
APPLICATION_MIRROR_COLUMNS = (
    "stage",
    "status",
    "reviewed_by",
    "reviewed_at",
    "review_message",
    "participation_confirmed_at",
)

TransitionValidator = Callable[[Optional[str], str], None]


def allow_any_transition(current_stage: Optional[str], next_stage: str) -> None:
    return None


def graph_transition_validator(graph: Dict[str, Iterable[str]]) -> TransitionValidator:
    """Validator that only allows the edges listed in `graph` (staying put is always allowed)"""
    allowed = {stage: set(targets) for stage, targets in graph.items()}

    def _validate(current_stage: Optional[str], next_stage: str) -> None:
        if current_stage is None or current_stage == next_stage:
            return
        if next_stage not in allowed.get(current_stage, set()):
            raise ValidationError(
                f"Stage transition '{current_stage}' -> '{next_stage}' is not allowed.",
                details={"from": current_stage, "to": next_stage},
            )

    return _validate


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def lock_program_application(db: Session, program_application_id: int) -> ProgramApplication:
    """SELECT ... FOR UPDATE on the program application; serializes pipeline mutations on it"""
    program_application = (
        db.query(ProgramApplication)
        .filter(ProgramApplication.id == program_application_id)
        .with_for_update()
        .first()
    )
    if not program_application:
        raise NotFoundError("Program application not found.")
    return program_application


def project_to_linked_application(db: Session, program_application: ProgramApplication) -> Optional[int]:
    """
    Mirror the program application's pipeline state onto its cohort Application.

    Called after every pipeline mutation. Returns the linked Application id,
    or None when no cohort could be resolved (the program application stays
    authoritative either way).
    """
    db.flush()
    linked_id = LinkResolver(db).ensure_linked_application_id(program_application.id)
    if not linked_id:
        return None

    values = {
        "stage": program_application.stage,
        "status": program_application.stage,
        "reviewed_at": program_application.reviewed_at,
        "review_message": program_application.review_message,
    }
    if program_application.reviewed_by is not None:
        values["reviewed_by"] = program_application.reviewed_by
    if program_application.participation_confirmed_at is not None:
        linked = db.get(Application, linked_id)
        if linked is not None and linked.participation_confirmed_at is None:
            values["participation_confirmed_at"] = program_application.participation_confirmed_at

    update_columns(db, Application, linked_id, values, APPLICATION_MIRROR_COLUMNS)
    return linked_id


class StageMachine:
    """Stage changes for program applications, mirrored onto the linked cohort Application"""

    def __init__(self, db: Session, validator: Optional[TransitionValidator] = None):
        self.db = db
        self.validator = validator or allow_any_transition

    def transition(
        self,
        program_application: ProgramApplication,
        next_stage: str,
        actor_user_id: Optional[int] = None,
        review_message: Optional[str] = None,
        keep_review_message: bool = False,
    ) -> ProgramApplication:
        """Apply a stage change in the caller's transaction (the row must already be locked)"""
        if next_stage not in STAGES:
            raise ValidationError(
                f"Invalid stage '{next_stage}'.",
                details={"allowed": list(STAGES)},
            )
        self.validator(program_application.stage, next_stage)

        program_application.stage = next_stage
        program_application.reviewed_at = utcnow()
        if actor_user_id is not None:
            program_application.reviewed_by = actor_user_id
        if not keep_review_message:
            program_application.review_message = normalize_text(review_message)
        self.db.flush()
        return program_application

    def patch_stage(
        self,
        program_application_id: int,
        next_stage: str,
        review_message: Optional[str] = None,
        actor_user_id: Optional[int] = None,
    ) -> ProgramApplication:
        with transaction(self.db):
            ensure_pipeline_ready(self.db)
            program_application = lock_program_application(self.db, program_application_id)
            previous_stage = program_application.stage

            self.transition(program_application, next_stage, actor_user_id, review_message)
            project_to_linked_application(self.db, program_application)

            actions.log_admin_action(
                self.db,
                actions.STAGE_CHANGED,
                "program_applications",
                program_application_id,
                f"Program application {program_application_id} moved from '{previous_stage}' to '{next_stage}'.",
                actor_user_id=actor_user_id,
                details={"from_stage": previous_stage, "to_stage": next_stage},
            )

        self.db.refresh(program_application)
        return program_application

    def mark_completed(self, program_application_id: int, actor_user_id: Optional[int] = None) -> Dict[str, object]:
        """Interview held: interview -> completed, stage -> interview_confirmed"""
        with transaction(self.db):
            ensure_pipeline_ready(self.db)
            program_application = lock_program_application(self.db, program_application_id)

            interview = (
                self.db.query(Interview)
                .filter(Interview.program_application_id == program_application_id)
                .order_by(Interview.id.desc())
                .first()
            )
            if not interview:
                raise NotFoundError("Interview not found for this program application.")

            interview.status = "completed"
            self.transition(program_application, "interview_confirmed", actor_user_id, keep_review_message=True)
            project_to_linked_application(self.db, program_application)

            actions.log_admin_action(
                self.db,
                actions.INTERVIEW_COMPLETED,
                "program_applications",
                program_application_id,
                f"Interview marked completed for program application {program_application_id}.",
                actor_user_id=actor_user_id,
                details={"interview_id": interview.id},
            )

        self.db.refresh(program_application)
        self.db.refresh(interview)
        return {"program_application": program_application, "interview": interview}

    def decide(
        self,
        program_application_id: int,
        decision: str,
        email: bool = False,
        whatsapp: bool = False,
        message_override: Optional[str] = None,
        actor_user_id: Optional[int] = None,
    ) -> Dict[str, object]:
        """Record accepted/rejected and optionally draft the decision notice(s)"""
        if decision not in ("accepted", "rejected"):
            raise ValidationError("decision must be 'accepted' or 'rejected'.")

        with transaction(self.db):
            ensure_pipeline_ready(self.db)
            program_application = lock_program_application(self.db, program_application_id)
            previous_stage = program_application.stage

            self.transition(program_application, decision, actor_user_id, message_override)
            linked_id = project_to_linked_application(self.db, program_application)

            dispatcher = MessageDispatcher(self.db)
            applicant = program_application.applicant
            drafts: List[ApplicationMessage] = []
            subject = "Application Accepted" if decision == "accepted" else "Application Rejected"
            template_key = "decision_accepted" if decision == "accepted" else "decision_rejected"

            if email:
                to_value = (applicant.email if applicant else None) or program_application.applicant_email_norm
                if not to_value:
                    raise ValidationError("Applicant email is required to create an email draft.")
                default_body = (
                    "Your application has been accepted. If you are sure you want to join, "
                    "please confirm here: {participation_confirm_url}"
                    if decision == "accepted"
                    else "Thank you for applying. Your application was not selected this round."
                )
                drafts.append(dispatcher.create_draft(
                    program_application,
                    channel="email",
                    to_value=to_value,
                    subject=subject,
                    body=message_override or default_body,
                    template_key=template_key,
                    actor_user_id=actor_user_id,
                    linked_application_id=linked_id,
                ))

            if whatsapp:
                to_value = (applicant.phone if applicant else None) or program_application.applicant_phone_norm
                if not to_value:
                    raise ValidationError("Applicant phone is required to create a WhatsApp draft.")
                default_body = (
                    "Your application has been accepted. Confirm participation: {participation_confirm_url}"
                    if decision == "accepted"
                    else "Your application was not selected this round."
                )
                drafts.append(dispatcher.create_draft(
                    program_application,
                    channel="whatsapp",
                    to_value=to_value,
                    subject=None,
                    body=message_override or default_body,
                    template_key=template_key,
                    actor_user_id=actor_user_id,
                    linked_application_id=linked_id,
                ))

            actions.log_admin_action(
                self.db,
                actions.DECISION_SET,
                "program_applications",
                program_application_id,
                f"Decision '{decision}' recorded for program application {program_application_id}.",
                actor_user_id=actor_user_id,
                details={
                    "decision": decision,
                    "from_stage": previous_stage,
                    "to_stage": decision,
                    "draft_ids": [draft.id for draft in drafts],
                },
            )

        self.db.refresh(program_application)
        return {"program_application": program_application, "message_drafts": drafts}
