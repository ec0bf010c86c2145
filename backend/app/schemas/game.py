from pydantic import BaseModel, Field


class LowCardCommandRequest(BaseModel):
    roomId: str = Field(min_length=1)
    message: str = Field(min_length=1, max_length=200)


class LowCardStatusRead(BaseModel):
    roomId: str
    isActive: bool
    status: dict | None = None
