from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EOCategoryRef(BaseModel):
    id: int
    title: str = ""


class EOEvent(BaseModel):
    """A natural event reported by EONET.

    ``date`` is lifted from the first geometry entry of the payload, which
    is where EONET reports when the event was observed.
    """

    id: str
    title: str
    description: Optional[str] = None
    link: Optional[str] = None
    closed: Optional[datetime] = None
    categories: list[EOCategoryRef] = []
    date: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _date_from_geometries(cls, data):
        if isinstance(data, dict) and data.get("date") is None:
            geometries = data.get("geometries") or []
            if geometries and isinstance(geometries[0], dict):
                data = {**data, "date": geometries[0].get("date")}
        return data

    def sort_key(self) -> float:
        """Timestamp used to order events newest first; undated events sort last."""
        when = self.date or self.closed
        if when is None:
            return float("-inf")
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return when.timestamp()


class EOCategory(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str = Field(alias="title")
    description: str = ""
    endpoint: str = Field(alias="link")
    events: list[EOEvent] = []
