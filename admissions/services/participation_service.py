import logging
from typing import Optional

from sqlalchemy.orm import Session

from admissions.core.normalize import normalize_text
from admissions.database.database import ensure_pipeline_ready, transaction
from admissions.models.program_application import ProgramApplication
from admissions.services import admin_action_service as actions
from admissions.services.stage_machine import (
    StageMachine,
    lock_program_application,
    project_to_linked_application,
    utcnow,
)

logger = logging.getLogger(__name__)


class ParticipationConfirmer:
    def __init__(self, db: Session, stage_machine: Optional[StageMachine] = None):
        self.db = db
        self.stage_machine = stage_machine or StageMachine(db)

    def apply(
        self,
        program_application: ProgramApplication,
        note: Optional[str] = None,
        actor_user_id: Optional[int] = None,
    ) -> ProgramApplication:
        """Confirm in the caller's transaction; the first confirmation time is kept"""
        previous_stage = program_application.stage
        self.stage_machine.transition(
            program_application, "participation_confirmed", actor_user_id, keep_review_message=True
        )
        if program_application.participation_confirmed_at is None:
            program_application.participation_confirmed_at = utcnow()
        note = normalize_text(note)
        if note is not None:
            program_application.participation_note = note
        project_to_linked_application(self.db, program_application)

        actions.log_admin_action(
            self.db,
            actions.PARTICIPATION_CONFIRMED,
            "program_applications",
            program_application.id,
            f"Participation confirmed for program application {program_application.id}.",
            actor_user_id=actor_user_id,
            details={"from_stage": previous_stage, "to_stage": "participation_confirmed", "note": note},
        )
        return program_application

    def confirm(
        self,
        program_application_id: int,
        note: Optional[str] = None,
        actor_user_id: Optional[int] = None,
    ) -> ProgramApplication:
        with transaction(self.db):
            ensure_pipeline_ready(self.db)
            program_application = lock_program_application(self.db, program_application_id)
            self.apply(program_application, note, actor_user_id)

        self.db.refresh(program_application)
        return program_application
