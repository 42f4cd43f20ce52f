from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from aida.database import Base, IdType, JSONType, new_id


class Message(Base):
    __tablename__ = "messages"

    id = Column(IdType, primary_key=True, default=new_id)
    conversation_id = Column(IdType, ForeignKey("conversations.id"), nullable=False, index=True)
    business_id = Column(IdType, nullable=False)
    sender_type = Column(Text, nullable=False)  # customer, assistant, agent
    content = Column(Text, nullable=False)
    message_type = Column(Text, nullable=False, default="text")
    message_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    is_processed = Column(Boolean, nullable=False, default=False)
    processing_time_ms = Column(Integer)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
