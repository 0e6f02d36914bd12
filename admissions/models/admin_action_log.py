from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func
from admissions.database.database import Base, JSONType

class AdminActionLog(Base):
    __tablename__ = "admin_action_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_user_id = Column(Integer)  # null for applicant-driven actions
    action = Column(String(80), nullable=False, index=True)
    entity_type = Column(String(80), nullable=False)
    entity_id = Column(Integer)
    message = Column(Text)
    details = Column(JSONType, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
