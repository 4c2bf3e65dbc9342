from pydantic import BaseModel


class Participant(BaseModel):
    participant_id: str
    role: str


class PresenceResponse(BaseModel):
    session_id: str
    state: str
    participants: list[Participant]
