from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Actor(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="login")
    avatar: Optional[str] = Field(default=None, alias="avatar_url")


class Repo(BaseModel):
    name: str


class Event(BaseModel):
    """A single entry of a GitHub repository's public event stream.

    Field aliases follow the GitHub REST payload; ``model_dump(by_alias=True)``
    produces the same shape back so snapshots can be decoded again.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    action: str = Field(alias="type")
    actor: Actor
    repo: Repo
    created_at: Optional[datetime] = None

    @property
    def summary(self) -> str:
        """``"<repo>, <verb>"`` e.g. ``"ReactiveX/RxSwift, push"``."""
        verb = self.action.replace("Event", "").lower()
        return f"{self.repo.name}, {verb}"
