import asyncio
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from shared.errors import DomainError
from shared.security import Actor, decode_token, get_current_actor

from .access import SessionAccess
from .registry import SessionConnection, SessionRegistry
from .relay import SignalingRelay
from .schemas import Participant, PresenceResponse
from .wiring import get_access, get_registry, get_relay

logger = logging.getLogger(__name__)

router = APIRouter()

CLOSE_CODES = {
    "UNAUTHORIZED": 4401,
    "FORBIDDEN": 4403,
    "NOT_FOUND": 4404,
    "INVALID_STATE": 4409,
    "TRANSIENT": 1013,
}
REPLACED_CLOSE_CODE = 4409


@router.get("/sessions/{session_id}/presence", response_model=PresenceResponse)
async def presence(
    session_id: str,
    actor: Actor = Depends(get_current_actor),
    access: SessionAccess = Depends(get_access),
    registry: SessionRegistry = Depends(get_registry),
):
    await access.authorize(session_id, actor)
    return PresenceResponse(
        session_id=session_id,
        state=registry.state_of(session_id).value,
        participants=[Participant(participant_id=p, role=r) for p, r in registry.participants(session_id)],
    )


@router.websocket("/ws/sessions/{session_id}")
async def session_socket(
    websocket: WebSocket,
    session_id: str,
    token: str | None = None,
    access: SessionAccess = Depends(get_access),
    relay: SignalingRelay = Depends(get_relay),
):
    try:
        actor = decode_token(token)
        role = await access.authorize(session_id, actor)
    except DomainError as e:
        logger.info("Session join refused", extra={"session_id": session_id, "reason": e.code})
        # a close before accept reaches browsers as a bare handshake 403
        await websocket.accept()
        await websocket.close(code=CLOSE_CODES.get(e.code, 4400), reason=e.detail)
        return

    await websocket.accept()

    connection = SessionConnection(session_id, actor.sub, role, websocket)
    writer = asyncio.create_task(connection.run_writer())

    replaced = await relay.join(connection)
    if replaced is not None:
        try:
            await replaced.channel.close(code=REPLACED_CLOSE_CODE, reason="Joined from another connection")
        except Exception as e:
            logger.debug("Replaced socket already gone", extra={"session_id": session_id, "error": str(e)})

    try:
        while True:
            text = await websocket.receive_text()
            try:
                frame = json.loads(text)
            except ValueError:
                connection.deliver({"type": "error", "code": "VALIDATION", "detail": "Frames must be JSON"})
                continue

            try:
                await relay.handle_frame(session_id, actor.sub, frame)
            except DomainError as e:
                connection.deliver({"type": "error", **e.to_dict()})
    except WebSocketDisconnect:
        pass
    finally:
        await relay.leave(connection)
        writer.cancel()
