import logging
from typing import Optional

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from admissions.database.database import dialect_insert
from admissions.models.application import Application
from admissions.models.program import Cohort, COHORT_STATUS_PRIORITY
from admissions.models.program_application import ProgramApplication

logger = logging.getLogger(__name__)


class LinkResolver:
    """
    Keeps a program application paired with one cohort-scoped Application.

    The pair is matched on applicant identity (applicant id, normalized email
    or normalized phone) inside a single cohort. Creation relies on the
    (cohort, email) / (cohort, phone) partial unique indexes plus
    ON CONFLICT, so concurrent callers converge on the same row.
    """

    def __init__(self, db: Session):
        self.db = db

    def resolve_target_cohort_id(self, program_application: ProgramApplication) -> Optional[int]:
        """Explicit cohort, else the program's best cohort by status, start date, then newest"""
        if program_application.cohort_id:
            return program_application.cohort_id

        status_rank = case(
            {status: rank for rank, status in enumerate(COHORT_STATUS_PRIORITY)},
            value=Cohort.status,
            else_=len(COHORT_STATUS_PRIORITY),
        )
        cohort = (
            self.db.query(Cohort)
            .filter(Cohort.program_id == program_application.program_id, Cohort.deleted_at.is_(None))
            .order_by(status_rank, Cohort.start_date.is_(None), Cohort.start_date.asc(), Cohort.id.desc())
            .first()
        )
        return cohort.id if cohort else None

    def find_existing(self, cohort_id: int, program_application: ProgramApplication) -> Optional[Application]:
        identity = []
        if program_application.applicant_id is not None:
            identity.append(Application.applicant_id == program_application.applicant_id)
        if program_application.applicant_email_norm:
            identity.append(Application.applicant_email_norm == program_application.applicant_email_norm)
        if program_application.applicant_phone_norm:
            identity.append(Application.applicant_phone_norm == program_application.applicant_phone_norm)
        if not identity:
            return None

        return (
            self.db.query(Application)
            .filter(Application.cohort_id == cohort_id, or_(*identity))
            .order_by(Application.submitted_at.desc(), Application.id.desc())
            .first()
        )

    def ensure_linked_application_id(self, program_application_id: int) -> Optional[int]:
        """Find or create the linked cohort Application; None when no cohort can be resolved"""
        program_application = self.db.get(ProgramApplication, program_application_id)
        if not program_application:
            return None

        cohort_id = self.resolve_target_cohort_id(program_application)
        if not cohort_id:
            logger.info(f"No cohort resolved for program application {program_application_id}; link skipped")
            return None

        existing = self.find_existing(cohort_id, program_application)
        if existing:
            return existing.id

        values = {
            "cohort_id": cohort_id,
            "applicant_id": program_application.applicant_id,
            "applicant_email_norm": program_application.applicant_email_norm,
            "applicant_phone_norm": program_application.applicant_phone_norm,
            "submission_answers": program_application.submission_answers or {},
            "stage": program_application.stage or "applied",
            "status": program_application.stage or "applied",
            "submitted_at": func.now(),
        }
        stmt = dialect_insert(self.db, Application).values(**values)

        # email is the preferred conflict key, phone the fallback
        if program_application.applicant_email_norm:
            conflict_column = "applicant_email_norm"
        elif program_application.applicant_phone_norm:
            conflict_column = "applicant_phone_norm"
        else:
            conflict_column = None

        if conflict_column:
            stmt = stmt.on_conflict_do_update(
                index_elements=["cohort_id", conflict_column],
                index_where=getattr(Application, conflict_column).isnot(None),
                set_={"applicant_id": func.coalesce(Application.applicant_id, stmt.excluded.applicant_id)},
            )

        application_id = self.db.execute(stmt.returning(Application.id)).scalar_one()
        logger.info(
            f"Linked program application {program_application_id} to application {application_id} (cohort {cohort_id})"
        )
        return application_id
