import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from admissions.models.admin_action_log import AdminActionLog

logger = logging.getLogger(__name__)

# action names
STAGE_CHANGED = "program_application_stage_changed"
INTERVIEW_SCHEDULED = "program_application_interview_scheduled"
INTERVIEW_COMPLETED = "program_application_interview_completed"
INTERVIEW_CONFIRMED = "interview_confirmed_by_applicant"
INTERVIEW_RESCHEDULE_REQUESTED = "interview_reschedule_requested"
MESSAGE_DRAFTED = "program_application_message_drafted"
MESSAGE_SENT = "program_application_message_sent"
MESSAGE_FAILED = "program_application_message_failed"
DECISION_SET = "program_application_decision_set"
PARTICIPATION_CONFIRMED = "program_application_participation_confirmed"
USER_CREATED = "user_created_from_program_application"
APPLICATION_SUBMITTED = "program_application_submitted"


def log_admin_action(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: Optional[int],
    message: str,
    actor_user_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AdminActionLog:
    """Audit row written in the caller's transaction"""
    entry = AdminActionLog(
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        message=message,
        details=details or {},
    )
    db.add(entry)
    db.flush()
    logger.info(f"{action}: {message} (actor={actor_user_id})")
    return entry
