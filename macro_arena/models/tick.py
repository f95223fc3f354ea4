"""Historical time-step models supplied by the tick provider."""
import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Observation(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    title: str
    value: float | None = None
    unit: str = ""


class PeerObservation(Observation):
    relationship: float = 0


class Tick(BaseModel):
    """One historical time-step of the target indicator plus its peers."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    date: dt.date
    country: str
    indicator: str
    primary: Observation
    peers: list[PeerObservation] = Field(default_factory=list)

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        # Provider timestamps arrive as "2024-01-31T00:00:00" or "...Z"
        if isinstance(v, dt.datetime):
            return v.date()
        if isinstance(v, str) and "T" in v:
            return dt.datetime.fromisoformat(v.replace("Z", "+00:00")).date()
        return v

    @property
    def actual(self) -> float | None:
        return self.primary.value
