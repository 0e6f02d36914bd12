"""
Outbound applicant messages.

Every message starts as a ``draft``. Sending renders the stored subject/body
against data read at send time (applicant, interview, participation link)
and hands the result to the channel adapter. A provider failure does not
raise: the message is stored as ``failed`` with ``metadata.last_error`` and
returned, and can be retried later. Only ``draft`` and ``failed`` messages
can be sent.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from admissions.core.config import settings
from admissions.core.exceptions import ConflictError, NotFoundError, ValidationError
from admissions.core.links import build_interview_links, build_participation_confirm_url, format_utc
from admissions.core.normalize import normalize_text
from admissions.core.security import generate_token
from admissions.database.database import ensure_pipeline_ready, transaction
from admissions.models.application import Application
from admissions.models.application_message import ApplicationMessage
from admissions.models.interview import Interview
from admissions.models.program_application import ProgramApplication
from admissions.services import admin_action_service as actions
from admissions.services.channel_service import ChannelRegistry, get_channel_registry
from admissions.services.link_resolver import LinkResolver
from admissions.services.template_service import TemplateService, render_template

logger = logging.getLogger(__name__)

SENDABLE_STATUSES = ("draft", "failed")
DEFAULT_SUBJECT = "Digital Hub Message"


def to_channel_storage(channel: str):
    """API channel -> (stored channel, metadata); WhatsApp is stored as sms"""
    if channel == "whatsapp":
        return "sms", {"provider": "whatsapp"}
    if channel == "sms":
        return "sms", {}
    if channel == "email":
        return "email", {}
    raise ValidationError(f"Unsupported channel '{channel}'.", details={"allowed": ["email", "sms", "whatsapp"]})


class MessageDispatcher:
    def __init__(self, db: Session, channels: Optional[ChannelRegistry] = None):
        self.db = db
        self._channels = channels

    @property
    def channels(self) -> ChannelRegistry:
        return self._channels or get_channel_registry()

    # drafts

    def create_draft(
        self,
        program_application: ProgramApplication,
        channel: str,
        to_value: str,
        body: str,
        subject: Optional[str] = None,
        template_key: Optional[str] = None,
        actor_user_id: Optional[int] = None,
        linked_application_id: Optional[int] = None,
    ) -> ApplicationMessage:
        """Insert a draft in the caller's transaction; messages always belong to a cohort Application"""
        stored_channel, metadata = to_channel_storage(channel)

        if linked_application_id is None:
            self.db.flush()
            linked_application_id = LinkResolver(self.db).ensure_linked_application_id(program_application.id)
        if linked_application_id is None:
            raise ValidationError(
                "Program application has no cohort to attach messages to.",
                details={"program_application_id": program_application.id},
            )

        message = ApplicationMessage(
            application_id=linked_application_id,
            program_application_id=program_application.id,
            channel=stored_channel,
            to_value=to_value,
            subject=subject,
            body=body,
            template_key=template_key,
            status="draft",
            created_by=actor_user_id,
            meta=metadata,
        )
        self.db.add(message)
        self.db.flush()
        return message

    def create_message(
        self,
        program_application_id: int,
        channel: str,
        body: Optional[str] = None,
        subject: Optional[str] = None,
        to_value: Optional[str] = None,
        template_key: Optional[str] = None,
        send_now: bool = False,
        actor_user_id: Optional[int] = None,
    ) -> ApplicationMessage:
        with transaction(self.db):
            ensure_pipeline_ready(self.db)
            program_application = self.db.get(ProgramApplication, program_application_id)
            if not program_application:
                raise NotFoundError("Program application not found.")

            template = None
            if template_key:
                template = TemplateService(self.db).get_by_key(template_key)
                if template is None:
                    raise ValidationError(f"Unknown message template '{template_key}'.")

            body = normalize_text(body) or (template["body"] if template else None)
            if not body:
                raise ValidationError("Message body is required.")
            subject = normalize_text(subject) or (template["subject"] if template else None)

            to_value = normalize_text(to_value) or self._default_destination(program_application, channel)
            if not to_value:
                raise ValidationError(f"No destination available for a {channel} message.")

            message = self.create_draft(
                program_application,
                channel=channel,
                to_value=to_value,
                subject=subject,
                body=body,
                template_key=template_key,
                actor_user_id=actor_user_id,
            )
            actions.log_admin_action(
                self.db,
                actions.MESSAGE_DRAFTED,
                "program_applications",
                program_application_id,
                f"A {message.channel} draft was created for program application {program_application_id}.",
                actor_user_id=actor_user_id,
                details={"message_id": message.id, "send_now": send_now},
            )

            if send_now:
                message = self.deliver(program_application_id, message, actor_user_id=actor_user_id)

        self.db.refresh(message)
        return message

    @staticmethod
    def _default_destination(program_application: ProgramApplication, channel: str) -> Optional[str]:
        applicant = program_application.applicant
        if channel == "email":
            return (applicant.email if applicant else None) or program_application.applicant_email_norm
        return (applicant.phone if applicant else None) or program_application.applicant_phone_norm

    def list_messages(self, program_application_id: int) -> List[ApplicationMessage]:
        ensure_pipeline_ready(self.db)
        if not self.db.get(ProgramApplication, program_application_id):
            raise NotFoundError("Program application not found.")
        return (
            self.db.query(ApplicationMessage)
            .filter(ApplicationMessage.program_application_id == program_application_id)
            .order_by(ApplicationMessage.created_at.desc(), ApplicationMessage.id.desc())
            .all()
        )

    # tokens

    def ensure_participation_token(self, application_id: int) -> Optional[str]:
        """Generated on first use and reused, so links already delivered stay valid"""
        application = self.db.get(Application, application_id)
        if application is None:
            return None
        if not application.participation_token:
            application.participation_token = generate_token()
            self.db.flush()
        return application.participation_token

    def build_tokens(self, program_application_id: int) -> Dict[str, Any]:
        """Runtime values for `{token}` placeholders, read at send time"""
        program_application = self.db.get(ProgramApplication, program_application_id)
        applicant = program_application.applicant if program_application else None
        interview = (
            self.db.query(Interview)
            .filter(Interview.program_application_id == program_application_id)
            .order_by(Interview.id.desc())
            .first()
        )

        linked_id = LinkResolver(self.db).ensure_linked_application_id(program_application_id)
        participation_token = ""
        participation_confirm_url = ""
        if linked_id:
            participation_token = self.ensure_participation_token(linked_id) or ""
            if participation_token:
                participation_confirm_url = build_participation_confirm_url(participation_token)

        if interview and interview.confirm_token:
            links = build_interview_links(interview.confirm_token)
        else:
            links = {"confirm_url": "", "reschedule_url": ""}

        return {
            "name": (applicant.full_name if applicant else None) or "Applicant",
            "application_id": (interview.application_id if interview else None) or linked_id or "",
            "program_application_id": program_application_id,
            "scheduled_at": format_utc(interview.scheduled_at) if interview else "",
            "duration_minutes": interview.duration_minutes if interview else "",
            "location_type": interview.location_type if interview else "",
            "location_details": (interview.location_details if interview else None) or "",
            "confirm_token": (interview.confirm_token if interview else None) or "",
            "confirm_url": links["confirm_url"],
            "reschedule_url": links["reschedule_url"],
            "participation_token": participation_token,
            "participation_confirm_url": participation_confirm_url,
            "sign_in_url": settings.learner_signin_url,
        }

    # delivery

    def deliver(
        self,
        program_application_id: int,
        message: ApplicationMessage,
        actor_user_id: Optional[int] = None,
        extra_tokens: Optional[Mapping[str, Any]] = None,
    ) -> ApplicationMessage:
        """Render and send in the caller's transaction; provider failures are recorded, not raised"""
        if message.status not in SENDABLE_STATUSES:
            raise ConflictError(
                f"Message {message.id} has already been sent.",
                details={"message_id": message.id, "status": message.status},
            )

        tokens = self.build_tokens(program_application_id)
        if extra_tokens:
            tokens.update(extra_tokens)

        if message.channel == "email":
            subject = render_template(message.subject or DEFAULT_SUBJECT, tokens)
        else:
            subject = render_template(message.subject, tokens) if message.subject else None
        body = render_template(message.body, tokens)

        adapter = self.channels.for_channel(message.channel)
        metadata = dict(message.meta or {})
        try:
            result = adapter.send(message.to_value, subject, body)
        except Exception as e:
            logger.warning(f"Message {message.id} ({message.provider}) to {message.to_value} failed: {e}")
            metadata["last_error"] = str(e) or e.__class__.__name__
            message.status = "failed"
            message.sent_at = None
            message.subject = subject
            message.body = body
            message.meta = metadata
            self.db.flush()
            actions.log_admin_action(
                self.db,
                actions.MESSAGE_FAILED,
                "program_applications",
                program_application_id,
                f"A {message.channel} message failed for program application {program_application_id}.",
                actor_user_id=actor_user_id,
                details={"message_id": message.id, "error": metadata["last_error"]},
            )
            return message

        metadata.pop("last_error", None)
        metadata["delivery_mode"] = result.get("mode")
        if result.get("provider_id"):
            metadata["provider_message_id"] = result["provider_id"]
        message.status = "sent"
        message.sent_at = datetime.now(timezone.utc)
        message.subject = subject
        message.body = body
        message.meta = metadata
        self.db.flush()
        actions.log_admin_action(
            self.db,
            actions.MESSAGE_SENT,
            "program_applications",
            program_application_id,
            f"A {message.channel} message was sent for program application {program_application_id}.",
            actor_user_id=actor_user_id,
            details={"message_id": message.id, "mode": result.get("mode")},
        )
        return message

    def send(self, program_application_id: int, message_id: int, actor_user_id: Optional[int] = None) -> ApplicationMessage:
        with transaction(self.db):
            ensure_pipeline_ready(self.db)
            message = (
                self.db.query(ApplicationMessage)
                .filter(
                    ApplicationMessage.id == message_id,
                    ApplicationMessage.program_application_id == program_application_id,
                )
                .first()
            )
            if not message:
                raise NotFoundError("Message not found.")
            message = self.deliver(program_application_id, message, actor_user_id=actor_user_id)

        self.db.refresh(message)
        return message

    def retry(self, message_id: int, actor_user_id: Optional[int] = None) -> ApplicationMessage:
        message = self.db.get(ApplicationMessage, message_id)
        if not message:
            raise NotFoundError("Message not found.")
        if message.program_application_id is None:
            raise ValidationError("Message is not attached to a program application.")
        return self.send(message.program_application_id, message_id, actor_user_id=actor_user_id)
