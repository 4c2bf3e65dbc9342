import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)

OUTBOUND_QUEUE_LIMIT = 256
SLOW_PEER_CLOSE_CODE = 1008


class RoomState(str, Enum):
    NO_PARTICIPANTS = "no-participants"
    ONE_JOINED = "one-joined"
    BOTH_JOINED = "both-joined"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionGrant:
    """Who may join a session. Issued when the booking goes in-progress."""

    session_id: str
    booking_id: str | None
    roles: dict[str, str] = field(default_factory=dict)
    active: bool = True

    def role_of(self, participant_id: str) -> str | None:
        return self.roles.get(participant_id)


class SessionConnection:
    """
    One participant's live channel.

    Frames are never written to the socket by the sender's task; they go into
    a FIFO queue drained by `run_writer`, so a slow peer cannot stall a room.
    A peer that lets `maxsize` frames pile up is cut off rather than buffered.
    """

    def __init__(self, session_id: str, participant_id: str, role: str, channel, maxsize: int = OUTBOUND_QUEUE_LIMIT):
        self.session_id = session_id
        self.participant_id = participant_id
        self.role = role
        self.channel = channel
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.overflowed = False

    def deliver(self, frame: dict) -> bool:
        if self.closed:
            logger.debug(
                "Dropping frame for closed connection",
                extra={"session_id": self.session_id, "participant_id": self.participant_id},
            )
            return False
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            self.closed = True
            self.overflowed = True
            logger.warning(
                "Peer is not reading; dropping frame and closing connection",
                extra={"session_id": self.session_id, "participant_id": self.participant_id},
            )
            return False
        return True

    async def _close_channel(self) -> None:
        self.overflowed = False
        try:
            await self.channel.close(code=SLOW_PEER_CLOSE_CODE, reason="Peer is not reading")
        except Exception as e:
            logger.debug(
                "Slow peer already gone",
                extra={"session_id": self.session_id, "participant_id": self.participant_id, "error": str(e)},
            )

    async def run_writer(self) -> None:
        while True:
            frame = await self.queue.get()
            try:
                if self.overflowed:
                    await self._close_channel()
                elif not self.closed:
                    await self.channel.send_json(frame)
            except Exception as e:
                self.closed = True
                logger.debug(
                    "Peer went away; dropping frame",
                    extra={"session_id": self.session_id, "participant_id": self.participant_id, "error": str(e)},
                )
            finally:
                self.queue.task_done()

    def close(self) -> None:
        self.closed = True


class Room:
    def __init__(self, session_id: str, now: float):
        self.session_id = session_id
        self.lock = asyncio.Lock()
        self.connections: dict[str, SessionConnection] = {}
        self.empty_since: float | None = now
        self.closed = False

    @property
    def state(self) -> RoomState:
        if self.closed:
            return RoomState.CLOSED
        if not self.connections:
            return RoomState.NO_PARTICIPANTS
        if len(self.connections) == 1:
            return RoomState.ONE_JOINED
        return RoomState.BOTH_JOINED


def presence_frame(frame_type: str, connection: SessionConnection) -> dict:
    return {
        "type": frame_type,
        "sessionId": connection.session_id,
        "participantId": connection.participant_id,
        "role": connection.role,
    }


class SessionRegistry:
    """
    Rooms and grants for live sessions.

    Every mutation of a room and every fan-out through it happens under that
    room's own lock. There is no registry-wide lock; unrelated sessions never
    contend.
    """

    def __init__(self, idle_timeout: float = 2 * 60 * 60, clock: Callable[[], float] = time.monotonic):
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._rooms: dict[str, Room] = {}
        self._grants: dict[str, SessionGrant] = {}
        self._granted_at: dict[str, float] = {}

    # ---------------- grants ----------------

    def grant(self, grant: SessionGrant) -> None:
        self._grants[grant.session_id] = grant
        self._granted_at[grant.session_id] = self._clock()

    def _drop_grant(self, session_id: str) -> None:
        self._grants.pop(session_id, None)
        self._granted_at.pop(session_id, None)

    def revoke(self, session_id: str) -> None:
        current = self._grants.get(session_id)
        if current is not None:
            self._grants[session_id] = replace(current, active=False)

    def grant_for(self, session_id: str) -> SessionGrant | None:
        return self._grants.get(session_id)

    # ---------------- rooms ----------------

    def _room_for(self, session_id: str) -> Room:
        room = self._rooms.get(session_id)
        if room is None or room.closed:
            room = Room(session_id, self._clock())
            self._rooms[session_id] = room
        return room

    def state_of(self, session_id: str) -> RoomState:
        room = self._rooms.get(session_id)
        if room is None:
            return RoomState.NO_PARTICIPANTS
        return room.state

    def participants(self, session_id: str) -> list[tuple[str, str]]:
        room = self._rooms.get(session_id)
        if room is None:
            return []
        return [(c.participant_id, c.role) for c in room.connections.values()]

    async def register(self, connection: SessionConnection) -> SessionConnection | None:
        """
        Add `connection` to its room. The joiner gets a `session-joined` frame
        listing the peers already present; those peers get `participant-joined`.
        Returns the connection this one replaced, if the participant rejoined.
        """
        while True:
            room = self._room_for(connection.session_id)
            async with room.lock:
                # reaped between lookup and acquire
                if room.closed:
                    continue

                replaced = room.connections.pop(connection.participant_id, None)
                if replaced is not None:
                    replaced.close()

                peers = list(room.connections.values())
                room.connections[connection.participant_id] = connection
                room.empty_since = None

                connection.deliver(
                    {
                        "type": "session-joined",
                        "sessionId": connection.session_id,
                        "participantId": connection.participant_id,
                        "participants": [
                            {"participantId": p.participant_id, "role": p.role} for p in peers
                        ],
                    }
                )
                notice = presence_frame("participant-joined", connection)
                for peer in peers:
                    peer.deliver(notice)
                return replaced

    async def deregister(self, connection: SessionConnection) -> bool:
        """
        Remove `connection` and tell the remaining peers. A connection that was
        already replaced by a rejoin is ignored.
        """
        room = self._rooms.get(connection.session_id)
        if room is None:
            connection.close()
            return False

        async with room.lock:
            current = room.connections.get(connection.participant_id)
            connection.close()
            if current is not connection:
                return False

            del room.connections[connection.participant_id]
            if not room.connections:
                room.empty_since = self._clock()

            notice = presence_frame("participant-left", connection)
            for peer in room.connections.values():
                peer.deliver(notice)
            return True

    async def fan_out(self, session_id: str, frame: dict, sender_id: str) -> int | None:
        """
        Enqueue `frame` for every participant except `sender_id`.
        Returns the number of recipients, or None when the sender is not in the room.
        """
        room = self._rooms.get(session_id)
        if room is None:
            return None

        async with room.lock:
            if sender_id not in room.connections:
                return None
            delivered = 0
            for participant_id, connection in room.connections.items():
                if participant_id == sender_id:
                    continue
                if connection.deliver(frame):
                    delivered += 1
            return delivered

    async def reap_idle(self) -> list[str]:
        now = self._clock()
        reaped = []

        for session_id, room in list(self._rooms.items()):
            if room.connections or room.empty_since is None:
                continue
            if now - room.empty_since <= self.idle_timeout:
                continue

            async with room.lock:
                # someone joined while we waited
                if room.connections or room.closed:
                    continue
                room.closed = True
                if self._rooms.get(session_id) is room:
                    del self._rooms[session_id]
                self._drop_grant(session_id)
                reaped.append(session_id)

        # a grant nobody used within the idle window is reloaded on the next join
        for session_id, grant in list(self._grants.items()):
            if session_id in self._rooms:
                continue
            expired = now - self._granted_at.get(session_id, now) > self.idle_timeout
            if not grant.active or expired:
                self._drop_grant(session_id)

        return reaped

    def __len__(self) -> int:
        return len(self._rooms)
