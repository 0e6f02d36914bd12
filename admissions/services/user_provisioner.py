import logging
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from admissions.core.config import settings
from admissions.core.exceptions import InternalError
from admissions.core.normalize import normalize_email, normalize_phone
from admissions.core.security import generate_password, get_password_hash
from admissions.database.database import dialect_insert, ensure_pipeline_ready, transaction
from admissions.models.enrollment import Enrollment
from admissions.models.program_application import ProgramApplication
from admissions.models.student_profile import StudentProfile
from admissions.models.user import User
from admissions.services import admin_action_service as actions
from admissions.services.link_resolver import LinkResolver
from admissions.services.message_dispatcher import MessageDispatcher
from admissions.services.stage_machine import lock_program_application, utcnow
from admissions.services.template_service import TemplateService

logger = logging.getLogger(__name__)


class UserProvisioner:
    """
    Turns a program application into a student account.

    ``created_user_id`` on the program application is the idempotence
    anchor: once set, later calls return the same user and send nothing.
    """

    def __init__(self, db: Session, dispatcher: Optional[MessageDispatcher] = None):
        self.db = db
        self.dispatcher = dispatcher or MessageDispatcher(db)

    def _find_user(self, email: Optional[str], phone: Optional[str]) -> Optional[User]:
        user = None
        if email:
            user = self.db.query(User).filter(User.email == email).first()
        if user is None and phone:
            user = self.db.query(User).filter(User.phone == phone).first()
        return user

    def _insert_user(self, email: Optional[str], phone: Optional[str], password_hash: str) -> User:
        stmt = (
            dialect_insert(self.db, User)
            .values(email=email, phone=phone, password_hash=password_hash, is_student=True, is_active=True)
            .on_conflict_do_nothing()
            .returning(User.id)
        )
        user_id = self.db.execute(stmt).scalar_one_or_none()
        if user_id is not None:
            return self.db.get(User, user_id)

        # lost a race on the email/phone unique constraint: use the winner's row
        user = self._find_user(email, phone)
        if user is None:
            raise InternalError(f"User insert for {email or phone} conflicted but no matching row was found.")
        if not user.is_student:
            user.is_student = True
        return user

    def _upsert_profile(self, user_id: int, full_name: str) -> None:
        stmt = dialect_insert(self.db, StudentProfile).values(user_id=user_id, full_name=full_name)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={"full_name": stmt.excluded.full_name},
        )
        self.db.execute(stmt)

    def _upsert_enrollment(self, user_id: int, cohort_id: int, application_id: Optional[int]) -> Enrollment:
        stmt = dialect_insert(self.db, Enrollment).values(
            student_user_id=user_id,
            cohort_id=cohort_id,
            application_id=application_id,
            status="active",
            enrolled_at=func.now(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["student_user_id", "cohort_id"],
            set_={
                "status": "active",
                "application_id": func.coalesce(Enrollment.application_id, stmt.excluded.application_id),
            },
        )
        enrollment_id = self.db.execute(stmt.returning(Enrollment.id)).scalar_one()
        return self.db.get(Enrollment, enrollment_id)

    def _send_credentials(
        self,
        program_application: ProgramApplication,
        full_name: str,
        email: Optional[str],
        phone: Optional[str],
        generated_password: Optional[str],
        linked_application_id: Optional[int],
        actor_user_id: Optional[int],
    ) -> Dict[str, Any]:
        use_email = bool(email) and not email.endswith(f"@{settings.synthetic_email_domain}")
        use_whatsapp = not use_email and bool(phone)
        if not use_email and not use_whatsapp:
            return {"skipped": True, "reason": "no_viable_channel", "message": None}
        if not linked_application_id:
            return {"skipped": True, "reason": "no_linked_application", "message": None}

        template = TemplateService(self.db).get_by_key("account_credentials")
        message = self.dispatcher.create_draft(
            program_application,
            channel="email" if use_email else "whatsapp",
            to_value=email if use_email else phone,
            subject=template["subject"] if use_email else None,
            body=template["body"],
            template_key="account_credentials",
            actor_user_id=actor_user_id,
            linked_application_id=linked_application_id,
        )
        message = self.dispatcher.deliver(
            program_application.id,
            message,
            actor_user_id=actor_user_id,
            extra_tokens={
                "name": full_name,
                "email": email or "",
                "phone": phone or "",
                "generated_password": generated_password or "",
                "sign_in_url": settings.learner_signin_url,
            },
        )
        return {"skipped": False, "reason": None, "message": message}

    def create_user_from_application(
        self,
        program_application_id: int,
        actor_user_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        with transaction(self.db):
            ensure_pipeline_ready(self.db)
            program_application = lock_program_application(self.db, program_application_id)

            if program_application.created_user_id:
                logger.info(
                    f"Program application {program_application_id} already has user {program_application.created_user_id}"
                )
                return {
                    "program_application": program_application,
                    "user_id": program_application.created_user_id,
                    "created": False,
                    "enrollment": None,
                    "generated_password": None,
                    "credentials": {"skipped": True, "reason": "already_provisioned", "message": None},
                }

            applicant = program_application.applicant
            full_name = (applicant.full_name if applicant else None) or "Student"
            email = normalize_email(applicant.email if applicant else None) or program_application.applicant_email_norm
            phone = normalize_phone(applicant.phone if applicant else None) or program_application.applicant_phone_norm
            # a login is needed even without any contact detail
            login_email = email or (
                None if phone else f"program-application-{program_application_id}@{settings.synthetic_email_domain}"
            )

            generated_password = None
            user = self._find_user(login_email, phone)
            if user is not None:
                if not user.is_student:
                    user.is_student = True
            else:
                generated_password = generate_password()
                user = self._insert_user(login_email, phone, get_password_hash(generated_password))
            user_id = user.id

            self._upsert_profile(user_id, full_name)

            resolver = LinkResolver(self.db)
            cohort_id = resolver.resolve_target_cohort_id(program_application)
            linked_id = resolver.ensure_linked_application_id(program_application_id)
            enrollment = self._upsert_enrollment(user_id, cohort_id, linked_id) if cohort_id else None

            program_application.created_user_id = user_id
            program_application.user_created_at = utcnow()
            self.db.flush()

            credentials = self._send_credentials(
                program_application, full_name, login_email, phone, generated_password, linked_id, actor_user_id
            )
            if credentials["skipped"]:
                logger.info(
                    f"Credentials message skipped for program application {program_application_id}: {credentials['reason']}"
                )

            credentials_message = credentials["message"]
            actions.log_admin_action(
                self.db,
                actions.USER_CREATED,
                "program_applications",
                program_application_id,
                f"User created from program application {program_application_id}.",
                actor_user_id=actor_user_id,
                details={
                    "user_id": user_id,
                    "cohort_id": cohort_id,
                    "enrollment_id": enrollment.id if enrollment else None,
                    "credentials_skipped": credentials["skipped"],
                    "credentials_reason": credentials["reason"],
                    "credentials_message_id": credentials_message.id if credentials_message else None,
                    "credentials_status": credentials_message.status if credentials_message else None,
                },
            )

        self.db.refresh(program_application)
        if enrollment is not None:
            self.db.refresh(enrollment)
        if credentials_message is not None:
            self.db.refresh(credentials_message)
        return {
            "program_application": program_application,
            "user_id": user_id,
            "created": generated_password is not None,
            "enrollment": enrollment,
            "generated_password": generated_password,
            "credentials": credentials,
        }
