import asyncio
import logging
from datetime import datetime, timezone

from shared.errors import AuthorizationError, ValidationError

from .chat_store import ChatRecord, ChatStore
from .registry import SessionConnection, SessionRegistry

logger = logging.getLogger(__name__)

RELAY_TYPES = frozenset({"offer", "answer", "ice-candidate", "chat"})


class SignalingRelay:
    """
    Forwards signaling and chat frames between the participants of a session.

    Payloads are passed through untouched. Only chat is persisted, and that
    happens in the background so the sender is never held up by the store.
    """

    def __init__(self, registry: SessionRegistry, chat_store: ChatStore | None = None):
        self.registry = registry
        self.chat_store = chat_store
        self._pending: set[asyncio.Task] = set()

    async def join(self, connection: SessionConnection) -> SessionConnection | None:
        replaced = await self.registry.register(connection)
        logger.info(
            "Participant joined",
            extra={
                "session_id": connection.session_id,
                "participant_id": connection.participant_id,
                "reason": "rejoin" if replaced is not None else None,
            },
        )
        return replaced

    async def leave(self, connection: SessionConnection) -> bool:
        removed = await self.registry.deregister(connection)
        if removed:
            logger.info(
                "Participant left",
                extra={"session_id": connection.session_id, "participant_id": connection.participant_id},
            )
        return removed

    async def relay(self, session_id: str, sender_id: str, frame_type: str, payload) -> int:
        if frame_type not in RELAY_TYPES:
            raise ValidationError(f"Unsupported message type: {frame_type}")

        frame = {"type": frame_type, "sessionId": session_id, "senderId": sender_id, "payload": payload}
        delivered = await self.registry.fan_out(session_id, frame, sender_id)
        if delivered is None:
            raise AuthorizationError("Join the session before sending")

        if frame_type == "chat":
            self._store_chat(ChatRecord(session_id, sender_id, payload, datetime.now(timezone.utc)))
        return delivered

    async def handle_frame(self, session_id: str, sender_id: str, frame) -> int:
        if not isinstance(frame, dict):
            raise ValidationError("Frames must be JSON objects")
        frame_type = frame.get("type")
        if not isinstance(frame_type, str):
            raise ValidationError("Frame has no type")
        return await self.relay(session_id, sender_id, frame_type, frame.get("payload"))

    def _store_chat(self, record: ChatRecord) -> None:
        if self.chat_store is None:
            return
        task = asyncio.create_task(self._save(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _save(self, record: ChatRecord) -> None:
        try:
            await self.chat_store.save(record)
        except Exception as e:
            logger.warning(
                "Chat message not stored",
                extra={"session_id": record.session_id, "participant_id": record.sender_id, "error": str(e)},
            )

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
