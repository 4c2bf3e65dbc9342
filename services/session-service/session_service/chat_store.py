from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from .models import ChatMessage

MESSAGE_MAX_LENGTH = 1000
MESSAGE_TYPES = ("text", "file", "system")


@dataclass(frozen=True)
class ChatRecord:
    session_id: str
    sender_id: str
    payload: object
    sent_at: datetime

    @property
    def message_type(self) -> str:
        if isinstance(self.payload, dict) and self.payload.get("messageType") in MESSAGE_TYPES:
            return self.payload["messageType"]
        return "text"

    @property
    def text(self) -> str:
        if isinstance(self.payload, dict):
            value = self.payload.get("message") or ""
        else:
            value = self.payload or ""
        return str(value)[:MESSAGE_MAX_LENGTH]


class ChatStore(ABC):
    @abstractmethod
    async def save(self, record: ChatRecord) -> None:
        raise NotImplementedError


class SqlChatStore(ChatStore):
    def __init__(self, sessionmaker):
        self._sessionmaker = sessionmaker

    async def save(self, record: ChatRecord) -> None:
        async with self._sessionmaker() as db:
            db.add(
                ChatMessage(
                    session_id=record.session_id,
                    sender_id=record.sender_id,
                    message_type=record.message_type,
                    message=record.text,
                    payload=record.payload if isinstance(record.payload, dict) else None,
                    created_at=record.sent_at,
                )
            )
            await db.commit()
