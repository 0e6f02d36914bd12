import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from admissions.core.exceptions import NotFoundError, ValidationError
from admissions.core.normalize import normalize_email, normalize_phone, normalize_text
from admissions.database.database import ensure_pipeline_ready, transaction
from admissions.models.applicant import Applicant
from admissions.models.program import Cohort, Program
from admissions.models.program_application import ProgramApplication
from admissions.services import admin_action_service as actions

logger = logging.getLogger(__name__)


@dataclass
class FormField:
    name: str
    label: str
    required: bool = False


class FormFieldProvider(ABC):
    """Field definitions for applicant answers, per program"""

    @abstractmethod
    def get_fields(self, program_id: int) -> Sequence[FormField]:
        ...


class StaticFormFieldProvider(FormFieldProvider):
    def __init__(self, fields: Optional[Sequence[FormField]] = None):
        self.fields = list(fields or [])

    def get_fields(self, program_id: int) -> Sequence[FormField]:
        return self.fields


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


class ApplicationSubmissionService:
    """Public intake of program applications"""

    def __init__(self, db: Session, form_fields: Optional[FormFieldProvider] = None):
        self.db = db
        self.form_fields = form_fields or StaticFormFieldProvider()

    def validate_answers(self, program_id: int, answers: Dict[str, Any]) -> None:
        missing: List[Dict[str, str]] = [
            {"field": field.name, "message": f"{field.label} is required."}
            for field in self.form_fields.get_fields(program_id)
            if field.required and _is_blank(answers.get(field.name))
        ]
        if missing:
            raise ValidationError("Some required answers are missing.", details=missing)

    def _find_or_create_applicant(self, full_name: str, email: Optional[str], phone: Optional[str]) -> Applicant:
        applicant = None
        if email:
            applicant = self.db.query(Applicant).filter(Applicant.email == email).first()
        if applicant is None and phone:
            applicant = self.db.query(Applicant).filter(Applicant.phone == phone).first()

        if applicant is None:
            applicant = Applicant(full_name=full_name, email=email, phone=phone)
            self.db.add(applicant)
        else:
            # fill in contact details the applicant did not give last time
            if email and not applicant.email:
                applicant.email = email
            if phone and not applicant.phone:
                applicant.phone = phone
        self.db.flush()
        return applicant

    def submit(
        self,
        program_id: int,
        full_name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        cohort_id: Optional[int] = None,
        answers: Optional[Dict[str, Any]] = None,
    ) -> ProgramApplication:
        answers = dict(answers or {})
        full_name = normalize_text(full_name)
        if not full_name:
            raise ValidationError("full_name is required.")

        email_norm = normalize_email(email)
        phone_norm = normalize_phone(phone)
        if phone is not None and normalize_text(phone) and phone_norm is None:
            raise ValidationError("phone must contain only digits, optionally prefixed with '+'.")
        if not email_norm and not phone_norm:
            raise ValidationError("An email or a phone number is required.")

        with transaction(self.db):
            ensure_pipeline_ready(self.db)
            program = (
                self.db.query(Program)
                .filter(Program.id == program_id, Program.deleted_at.is_(None))
                .first()
            )
            if not program:
                raise NotFoundError("Program not found.")

            if cohort_id is not None:
                cohort = (
                    self.db.query(Cohort)
                    .filter(Cohort.id == cohort_id, Cohort.deleted_at.is_(None))
                    .first()
                )
                if not cohort or cohort.program_id != program.id:
                    raise ValidationError("Cohort does not belong to this program.", details={"cohort_id": cohort_id})

            self.validate_answers(program.id, answers)

            applicant = self._find_or_create_applicant(full_name, email_norm, phone_norm)
            program_application = ProgramApplication(
                program_id=program.id,
                cohort_id=cohort_id,
                applicant_id=applicant.id,
                applicant_email_norm=email_norm,
                applicant_phone_norm=phone_norm,
                submission_answers=answers,
                stage="applied",
            )
            self.db.add(program_application)
            self.db.flush()

            actions.log_admin_action(
                self.db,
                actions.APPLICATION_SUBMITTED,
                "program_applications",
                program_application.id,
                f"Program application {program_application.id} submitted for program {program.id}.",
                details={"applicant_id": applicant.id, "cohort_id": cohort_id},
            )

        self.db.refresh(program_application)
        return program_application
