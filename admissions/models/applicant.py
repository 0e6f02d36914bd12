from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from admissions.database.database import Base

class Applicant(Base):
    __tablename__ = "applicants"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), index=True)  # normalized
    phone = Column(String(32), index=True)  # normalized
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # relationships
    program_applications = relationship("ProgramApplication", back_populates="applicant")
