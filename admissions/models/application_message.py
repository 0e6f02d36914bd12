from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from admissions.database.database import Base, JSONType

MESSAGE_STATUSES = ("draft", "sent", "failed")


class ApplicationMessage(Base):
    __tablename__ = "application_messages"

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False, index=True)
    program_application_id = Column(Integer, ForeignKey("program_applications.id"), index=True)
    channel = Column(String(16), nullable=False)  # email | sms (WhatsApp is sms + metadata.provider)
    to_value = Column(String(255), nullable=False)
    subject = Column(String(500))
    body = Column(Text, nullable=False)
    template_key = Column(String(120))
    status = Column(String(16), nullable=False, default="draft")
    sent_at = Column(DateTime(timezone=True))
    created_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    # `metadata` is reserved on declarative classes
    meta = Column("metadata", JSONType, default=dict)

    @property
    def provider(self) -> str:
        if self.channel == "email":
            return "email"
        return (self.meta or {}).get("provider") or "whatsapp"
