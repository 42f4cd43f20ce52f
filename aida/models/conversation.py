from sqlalchemy import Column, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from aida.database import Base, IdType, new_id


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(IdType, primary_key=True, default=new_id)
    business_id = Column(IdType, nullable=False, index=True)
    assistant_id = Column(IdType, ForeignKey("assistants.id"), nullable=False)
    customer_phone = Column(Text)
    customer_name = Column(Text)
    status = Column(Text, nullable=False, default="active")  # active, closed, escalated
    context_summary = Column(Text, default="")
    started_at = Column(DateTime(timezone=True))
    last_message_at = Column(DateTime(timezone=True))

    assistant = relationship("Assistant", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation")
