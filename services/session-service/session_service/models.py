from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, JSON, String

from .db import Base


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True)
    session_id = Column(String, nullable=False, index=True)
    sender_id = Column(String, nullable=False, index=True)
    message_type = Column(String, nullable=False, default="text")  # text/file/system
    message = Column(String(1000), nullable=False)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
