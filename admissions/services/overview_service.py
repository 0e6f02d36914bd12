from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.orm import Session

from admissions.database.database import ensure_pipeline_ready
from admissions.models.application_message import ApplicationMessage, MESSAGE_STATUSES
from admissions.models.interview import Interview, INTERVIEW_STATUSES
from admissions.models.program_application import ProgramApplication, STAGES


class OverviewService:
    def __init__(self, db: Session):
        self.db = db

    def _counts(self, column, keys) -> Dict[str, int]:
        counts = {key: 0 for key in keys}
        for value, count in self.db.query(column, func.count()).group_by(column).all():
            counts[value] = count
        return counts

    def pipeline_counts(self) -> Dict[str, Any]:
        """Dashboard counts; every known stage/status is present even when zero"""
        ensure_pipeline_ready(self.db)
        stages = self._counts(ProgramApplication.stage, STAGES)
        return {
            "total": sum(stages.values()),
            "stages": stages,
            "messages": self._counts(ApplicationMessage.status, MESSAGE_STATUSES),
            "interviews": self._counts(Interview.status, INTERVIEW_STATUSES),
        }
