from datetime import datetime

from pydantic import BaseModel, Field


class RoomCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=500)
    type: str = "room"
    maxMembers: int
    createdBy: str | None = None


class ParticipantAddRequest(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    role: str = "user"


class RoomRead(BaseModel):
    id: str
    name: str
    description: str
    managedBy: str
    type: str
    members: int
    maxMembers: int
    createdBy: str
    createdAt: datetime | None = None
