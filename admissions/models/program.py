from sqlalchemy import Column, Integer, String, Text, DateTime, Date, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from admissions.database.database import Base

# Ordering used when a program application has no explicit cohort
COHORT_STATUS_PRIORITY = ("open", "running", "coming_soon", "planned", "completed")


class Program(Base):
    __tablename__ = "programs"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(200), unique=True, nullable=False)
    title = Column(String(200), nullable=False)
    summary = Column(Text)
    description = Column(Text)
    requirements = Column(Text)
    default_capacity = Column(Integer)
    is_published = Column(Boolean, default=True)
    deleted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # relationships
    cohorts = relationship("Cohort", back_populates="program")


class Cohort(Base):
    __tablename__ = "cohorts"

    id = Column(Integer, primary_key=True, index=True)
    program_id = Column(Integer, ForeignKey("programs.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    status = Column(String(32), nullable=False, default="planned")  # open | running | coming_soon | planned | completed | cancelled
    capacity = Column(Integer)
    start_date = Column(Date)
    end_date = Column(Date)
    deleted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # relationships
    program = relationship("Program", back_populates="cohorts")
