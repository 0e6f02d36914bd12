"""
Message templates.

Templates hold ``{token}`` placeholders that are filled in at send time.
Unknown tokens are left in the output untouched, so admin-authored free
text containing braces is delivered as written.
"""

import logging
import re
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from admissions.database.database import dialect_insert
from admissions.models.message_template import MessageTemplate

logger = logging.getLogger(__name__)

TEMPLATES_LOCK_KEY = 42100421

_TOKEN_PATTERN = re.compile(r"\{\s*([a-zA-Z0-9_]+)\s*\}")

DEFAULT_MESSAGE_TEMPLATES = [
    {
        "key": "general_update",
        "label": "General Update",
        "description": "Generic update for applicants/users.",
        "subject": "General Update",
        "body": "Hello {name},\n\nWe have a quick update for you.\n\nBest regards,\nDigital Hub Team",
        "sort_order": 10,
    },
    {
        "key": "reminder",
        "label": "Reminder",
        "description": "Reminder message for pending actions.",
        "subject": "Reminder",
        "body": "Hello {name},\n\nThis is a reminder about your pending action.\n\nBest regards,\nDigital Hub Team",
        "sort_order": 20,
    },
    {
        "key": "follow_up",
        "label": "Follow Up",
        "description": "Follow-up message after a previous contact.",
        "subject": "Follow Up",
        "body": "Hello {name},\n\nFollowing up on our previous message.\n\nBest regards,\nDigital Hub Team",
        "sort_order": 30,
    },
    {
        "key": "interview_scheduling",
        "label": "Interview Scheduling",
        "description": "Template for interview scheduling messages.",
        "subject": "Interview Invitation",
        "body": (
            "Dear {name},\n\nYour interview has been scheduled on {scheduled_at}.\n"
            "Duration: {duration_minutes} minutes\n"
            "Location Type: {location_type}\n"
            "Location Details: {location_details}\n"
            "Application ID: {application_id}\n"
            "Confirm Token: {confirm_token}\n"
            "Confirm here: {confirm_url}\n"
            "Reschedule here: {reschedule_url}\n\nBest regards,\nAdmissions Team"
        ),
        "sort_order": 40,
    },
    {
        "key": "interview_confirmation",
        "label": "Interview Confirmation",
        "description": "Template when interview is confirmed.",
        "subject": "Interview Confirmed",
        "body": (
            "Dear {name},\n\nYour interview is confirmed for {scheduled_at}.\n"
            "We look forward to speaking with you.\n\nBest regards,\nAdmissions Team"
        ),
        "sort_order": 50,
    },
    {
        "key": "decision_accepted",
        "label": "Acceptance Letter",
        "description": "Template for accepted decisions.",
        "subject": "Application Accepted",
        "body": (
            "Dear {name},\n\nCongratulations. You have been accepted into our program.\n"
            "If you are sure you want to join, please confirm here:\n{participation_confirm_url}\n\n"
            "Warm regards,\nAdmissions Team"
        ),
        "sort_order": 60,
    },
    {
        "key": "decision_rejected",
        "label": "Rejection Notice",
        "description": "Template for rejected decisions.",
        "subject": "Application Update",
        "body": (
            "Dear {name},\n\nThank you for applying. After careful review, "
            "we are unable to offer a place at this time.\n\nBest regards,\nAdmissions Team"
        ),
        "sort_order": 70,
    },
    {
        "key": "account_credentials",
        "label": "Account Credentials",
        "description": "Sent automatically when admin creates a user from an application.",
        "subject": "Your Digital Hub Account",
        "body": (
            "Dear {name},\n\n"
            "Your student account has been created.\n"
            "Email: {email}\n"
            "Temporary Password: {generated_password}\n"
            "Sign in here: {sign_in_url}\n\n"
            "Please sign in and change your password.\n\nBest regards,\nDigital Hub Team"
        ),
        "sort_order": 80,
    },
]

_DEFAULTS_BY_KEY = {template["key"]: template for template in DEFAULT_MESSAGE_TEMPLATES}


def render_template(template: Optional[str], tokens: Mapping[str, Any]) -> str:
    """Replace ``{key}`` placeholders; None renders as an empty string, unknown keys stay verbatim"""

    def _replace(match):
        key = match.group(1)
        if key not in tokens:
            return match.group(0)
        value = tokens[key]
        return "" if value is None else str(value)

    return _TOKEN_PATTERN.sub(_replace, template or "")


class TemplateService:
    def __init__(self, db: Session):
        self.db = db

    def ensure_default_templates(self) -> int:
        """Insert any missing default template; existing rows are never touched. Commits."""
        try:
            if self.db.get_bind().dialect.name == "postgresql":
                # serializes concurrent workers bootstrapping at the same time
                self.db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": TEMPLATES_LOCK_KEY})

            rows = [
                {
                    "key": template["key"],
                    "label": template["label"],
                    "description": template["description"],
                    "channel": "all",
                    "subject": template["subject"],
                    "body": template["body"],
                    "is_active": True,
                    "sort_order": template["sort_order"],
                }
                for template in DEFAULT_MESSAGE_TEMPLATES
            ]
            stmt = dialect_insert(self.db, MessageTemplate).values(rows)
            result = self.db.execute(stmt.on_conflict_do_nothing(index_elements=["key"]))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        inserted = max(result.rowcount or 0, 0)
        logger.info(f"Default message templates ensured ({inserted} inserted)")
        return inserted

    def get_by_key(self, key: str) -> Optional[Dict[str, Optional[str]]]:
        """Active stored template, else the built-in default, else None"""
        template = (
            self.db.query(MessageTemplate)
            .filter(MessageTemplate.key == key, MessageTemplate.is_active.is_(True))
            .first()
        )
        if template:
            return {"subject": template.subject, "body": template.body}

        default = _DEFAULTS_BY_KEY.get(key)
        if default:
            return {"subject": default["subject"], "body": default["body"]}
        return None
