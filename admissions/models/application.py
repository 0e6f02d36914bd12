from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, text
from sqlalchemy.sql import func
from admissions.database.database import Base, JSONType


class Application(Base):
    """Cohort-scoped application record kept in step with a ProgramApplication"""
    __tablename__ = "applications"
    __table_args__ = (
        # at most one application per (cohort, applicant identity)
        Index(
            "uq_applications_cohort_email",
            "cohort_id",
            "applicant_email_norm",
            unique=True,
            postgresql_where=text("applicant_email_norm IS NOT NULL"),
            sqlite_where=text("applicant_email_norm IS NOT NULL"),
        ),
        Index(
            "uq_applications_cohort_phone",
            "cohort_id",
            "applicant_phone_norm",
            unique=True,
            postgresql_where=text("applicant_phone_norm IS NOT NULL"),
            sqlite_where=text("applicant_phone_norm IS NOT NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    cohort_id = Column(Integer, ForeignKey("cohorts.id"), nullable=False, index=True)
    applicant_id = Column(Integer, ForeignKey("applicants.id"))
    applicant_email_norm = Column(String(255))
    applicant_phone_norm = Column(String(32))
    submission_answers = Column(JSONType, default=dict)
    stage = Column(String(32), nullable=False, default="applied")
    status = Column(String(32), nullable=False, default="applied")
    reviewed_by = Column(Integer)
    reviewed_at = Column(DateTime(timezone=True))
    review_message = Column(Text)
    participation_token = Column(String(64), unique=True)
    participation_confirmed_at = Column(DateTime(timezone=True))
    submitted_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
