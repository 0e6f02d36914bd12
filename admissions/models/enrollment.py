from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from admissions.database.database import Base

class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("student_user_id", "cohort_id", name="uq_enrollments_student_cohort"),
    )

    id = Column(Integer, primary_key=True, index=True)
    student_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    cohort_id = Column(Integer, ForeignKey("cohorts.id"), nullable=False, index=True)
    application_id = Column(Integer, ForeignKey("applications.id"))
    status = Column(String(32), nullable=False, default="active")
    enrolled_at = Column(DateTime(timezone=True))
