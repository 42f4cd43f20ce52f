from sqlalchemy import Boolean, Column, DateTime, Text
from sqlalchemy.orm import relationship

from aida.database import Base, IdType, JSONType, new_id


class Assistant(Base):
    __tablename__ = "assistants"

    id = Column(IdType, primary_key=True, default=new_id)
    business_id = Column(IdType, nullable=False, index=True)
    name = Column(Text, nullable=False)
    personality_prompt = Column(Text)
    system_prompt = Column(Text)
    # max_response_length, confidence_threshold, escalation_keywords, response_style
    settings = Column(JSONType, nullable=False, default=dict)
    # total_conversations, total_messages, avg_response_time_ms, last_active_at
    metrics = Column(JSONType, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))

    conversations = relationship("Conversation", back_populates="assistant")
