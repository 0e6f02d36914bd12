import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from admissions.core.exceptions import ConflictError, NotFoundError
from admissions.core.normalize import normalize_text
from admissions.database.database import ensure_pipeline_ready, transaction, update_columns
from admissions.models.application import Application
from admissions.models.application_message import ApplicationMessage
from admissions.models.interview import Interview
from admissions.services import admin_action_service as actions
from admissions.services.participation_service import ParticipationConfirmer
from admissions.services.stage_machine import (
    APPLICATION_MIRROR_COLUMNS,
    StageMachine,
    lock_program_application,
    project_to_linked_application,
    utcnow,
)

logger = logging.getLogger(__name__)

PARTICIPATION_ALLOWED_STAGES = ("accepted", "participation_confirmed")
CLOSED_INTERVIEW_STATUSES = ("completed", "cancelled")


class PublicLinkService:
    """Applicant actions authorized by the token in a delivered link"""

    def __init__(self, db: Session):
        self.db = db

    def _interview_by_token(self, token: str) -> Interview:
        interview = (
            self.db.query(Interview)
            .filter(Interview.confirm_token == token)
            .with_for_update()
            .first()
        )
        if not interview:
            raise NotFoundError("Interview invitation not found or no longer valid.")
        if interview.status in CLOSED_INTERVIEW_STATUSES:
            raise ConflictError(f"Interview is already {interview.status}.", details={"status": interview.status})
        return interview

    def confirm_interview(self, token: str, note: Optional[str] = None) -> Interview:
        with transaction(self.db):
            ensure_pipeline_ready(self.db)
            interview = self._interview_by_token(token)
            interview.status = "confirmed"
            interview.confirmed_at = utcnow()
            interview.applicant_response_note = normalize_text(note)
            self.db.flush()

            if interview.program_application_id:
                program_application = lock_program_application(self.db, interview.program_application_id)
                if program_application.stage == "invited_to_interview":
                    StageMachine(self.db).transition(
                        program_application, "interview_confirmed", keep_review_message=True
                    )
                    project_to_linked_application(self.db, program_application)

            actions.log_admin_action(
                self.db,
                actions.INTERVIEW_CONFIRMED,
                "interviews",
                interview.id,
                f"Interview {interview.id} confirmed by applicant.",
                details={"program_application_id": interview.program_application_id},
            )

        self.db.refresh(interview)
        return interview

    def request_reschedule(
        self,
        token: str,
        requested_at: Optional[datetime] = None,
        note: Optional[str] = None,
    ) -> Interview:
        with transaction(self.db):
            ensure_pipeline_ready(self.db)
            interview = self._interview_by_token(token)
            if requested_at is not None and requested_at.tzinfo is None:
                requested_at = requested_at.replace(tzinfo=timezone.utc)
            interview.status = "reschedule_requested"
            interview.requested_at = requested_at or utcnow()
            interview.confirmed_at = None
            interview.applicant_response_note = normalize_text(note)
            self.db.flush()

            actions.log_admin_action(
                self.db,
                actions.INTERVIEW_RESCHEDULE_REQUESTED,
                "interviews",
                interview.id,
                f"Reschedule requested for interview {interview.id}.",
                details={
                    "program_application_id": interview.program_application_id,
                    "requested_at": interview.requested_at.isoformat(),
                },
            )

        self.db.refresh(interview)
        return interview

    def _linked_program_application_ids(self, application_id: int) -> List[int]:
        via_interviews = (
            self.db.query(Interview.program_application_id)
            .filter(Interview.application_id == application_id, Interview.program_application_id.isnot(None))
        )
        via_messages = (
            self.db.query(ApplicationMessage.program_application_id)
            .filter(
                ApplicationMessage.application_id == application_id,
                ApplicationMessage.program_application_id.isnot(None),
            )
        )
        ids = {row[0] for row in via_interviews.all()} | {row[0] for row in via_messages.all()}
        return sorted(ids)

    def confirm_participation(self, token: str, note: Optional[str] = None) -> Dict[str, Any]:
        with transaction(self.db):
            ensure_pipeline_ready(self.db)
            application = (
                self.db.query(Application)
                .filter(Application.participation_token == token)
                .with_for_update()
                .first()
            )
            if not application:
                raise NotFoundError("Participation link not found or no longer valid.")

            program_applications = [
                lock_program_application(self.db, program_application_id)
                for program_application_id in self._linked_program_application_ids(application.id)
            ]
            eligible = application.stage in PARTICIPATION_ALLOWED_STAGES or any(
                program_application.stage in PARTICIPATION_ALLOWED_STAGES
                for program_application in program_applications
            )
            if not eligible:
                raise ConflictError(
                    "Participation can only be confirmed for accepted applications.",
                    details={"stage": application.stage},
                )

            values = {"stage": "participation_confirmed", "status": "participation_confirmed"}
            if application.participation_confirmed_at is None:
                values["participation_confirmed_at"] = utcnow()
            update_columns(self.db, Application, application.id, values, APPLICATION_MIRROR_COLUMNS)

            confirmer = ParticipationConfirmer(self.db)
            for program_application in program_applications:
                confirmer.apply(program_application, note)

        self.db.refresh(application)
        return {
            "application_id": application.id,
            "participation_confirmed_at": application.participation_confirmed_at,
            "program_application_ids": [program_application.id for program_application in program_applications],
        }
