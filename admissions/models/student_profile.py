from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from admissions.database.database import Base

class StudentProfile(Base):
    __tablename__ = "student_profiles"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    full_name = Column(String(200), nullable=False)
    avatar_url = Column(String(500))
    bio = Column(Text)
    is_public = Column(Boolean, default=False)
    featured = Column(Boolean, default=False)
    public_slug = Column(String(200), unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # relationships
    user = relationship("User", back_populates="student_profile")
