from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from admissions.database.database import Base, JSONType

STAGES = (
    "applied",
    "reviewing",
    "invited_to_interview",
    "interview_confirmed",
    "accepted",
    "rejected",
    "participation_confirmed",
)


class ProgramApplication(Base):
    __tablename__ = "program_applications"

    id = Column(Integer, primary_key=True, index=True)
    program_id = Column(Integer, ForeignKey("programs.id"), nullable=False, index=True)
    cohort_id = Column(Integer, ForeignKey("cohorts.id"))
    applicant_id = Column(Integer, ForeignKey("applicants.id"), index=True)
    applicant_email_norm = Column(String(255))
    applicant_phone_norm = Column(String(32))
    submission_answers = Column(JSONType, default=dict)
    stage = Column(String(32), nullable=False, default="applied", index=True)

    # review audit
    reviewed_by = Column(Integer)
    reviewed_at = Column(DateTime(timezone=True))
    review_message = Column(Text)

    participation_confirmed_at = Column(DateTime(timezone=True))
    participation_note = Column(Text)

    # set once by user provisioning, never overwritten
    created_user_id = Column(Integer, ForeignKey("users.id"))
    user_created_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # relationships
    program = relationship("Program")
    applicant = relationship("Applicant", back_populates="program_applications")
