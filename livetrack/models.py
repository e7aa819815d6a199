# livetrack/models.py
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LocationSample(BaseModel):
    """One accepted location report. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    identity: str = Field(min_length=1)
    token: Optional[str] = None
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    ip: Optional[str] = None
    when: str

    def to_wire(self) -> dict:
        # optional fields are left out when empty
        return self.model_dump(exclude_none=True)


class Ack(BaseModel):
    status: str = "ok"


class History(BaseModel):
    identity: str
    locations: list[LocationSample]
