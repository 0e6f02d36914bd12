from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from admissions.database.database import Base

INTERVIEW_STATUSES = (
    "pending_confirmation",
    "confirmed",
    "reschedule_requested",
    "completed",
    "cancelled",
)

LOCATION_TYPES = ("online", "in_person", "phone")


class Interview(Base):
    __tablename__ = "interviews"

    id = Column(Integer, primary_key=True, index=True)
    # one interview per program application, kept by the scheduler's upsert
    program_application_id = Column(Integer, ForeignKey("program_applications.id"), index=True)
    application_id = Column(Integer, ForeignKey("applications.id"), index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    location_type = Column(String(32), nullable=False, default="online")
    location_details = Column(Text)
    status = Column(String(32), nullable=False, default="pending_confirmation")
    applicant_response_note = Column(Text)
    requested_at = Column(DateTime(timezone=True))
    confirmed_at = Column(DateTime(timezone=True))
    confirm_token = Column(String(64), unique=True, index=True)
    created_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
