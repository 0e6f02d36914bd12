import math
from typing import Any, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from admissions.core.exceptions import NotFoundError, ValidationError
from admissions.core.normalize import normalize_text
from admissions.database.database import ensure_pipeline_ready
from admissions.models.applicant import Applicant
from admissions.models.application_message import ApplicationMessage
from admissions.models.interview import Interview
from admissions.models.program_application import ProgramApplication, STAGES
from admissions.services.link_resolver import LinkResolver

SORT_COLUMNS = {
    "created_at": ProgramApplication.created_at,
    "updated_at": ProgramApplication.updated_at,
    "stage": ProgramApplication.stage,
}


class ProgramApplicationService:
    def __init__(self, db: Session):
        self.db = db

    def list_program_applications(
        self,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        order: str = "desc",
        stage: Optional[str] = None,
        program_id: Optional[int] = None,
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Paginated list; unknown sort keys fall back to created_at, unknown orders to desc"""
        ensure_pipeline_ready(self.db)
        if stage is not None and stage not in STAGES:
            raise ValidationError(f"Invalid stage '{stage}'.", details={"allowed": list(STAGES)})

        query = (
            self.db.query(ProgramApplication)
            .outerjoin(Applicant, ProgramApplication.applicant_id == Applicant.id)
        )
        if stage:
            query = query.filter(ProgramApplication.stage == stage)
        if program_id is not None:
            query = query.filter(ProgramApplication.program_id == program_id)

        search = normalize_text(search)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Applicant.full_name.ilike(pattern),
                Applicant.email.ilike(pattern),
                Applicant.phone.ilike(pattern),
                ProgramApplication.applicant_email_norm.ilike(pattern),
                ProgramApplication.applicant_phone_norm.ilike(pattern),
            ))

        total = query.count()

        sort_column = SORT_COLUMNS.get(sort_by, ProgramApplication.created_at)
        direction = sort_column.asc() if order == "asc" else sort_column.desc()
        tie_break = ProgramApplication.id.asc() if order == "asc" else ProgramApplication.id.desc()
        rows = query.options(joinedload(ProgramApplication.applicant)).order_by(direction, tie_break).offset((page - 1) * limit).limit(limit).all()

        return {
            "items": rows,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
        }

    def get_detail(self, program_application_id: int) -> Dict[str, Any]:
        ensure_pipeline_ready(self.db)
        program_application = self.db.get(ProgramApplication, program_application_id)
        if not program_application:
            raise NotFoundError("Program application not found.")

        interview = (
            self.db.query(Interview)
            .filter(Interview.program_application_id == program_application_id)
            .order_by(Interview.id.desc())
            .first()
        )
        messages = (
            self.db.query(ApplicationMessage)
            .filter(ApplicationMessage.program_application_id == program_application_id)
            .order_by(ApplicationMessage.created_at.desc(), ApplicationMessage.id.desc())
            .all()
        )
        # read-only lookup: never creates the cohort application from a GET
        resolver = LinkResolver(self.db)
        cohort_id = resolver.resolve_target_cohort_id(program_application)
        linked = resolver.find_existing(cohort_id, program_application) if cohort_id else None

        return {
            "program_application": program_application,
            "applicant": program_application.applicant,
            "program": program_application.program,
            "linked_application_id": linked.id if linked else None,
            "interview": interview,
            "messages": messages,
        }
