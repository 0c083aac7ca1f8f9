from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .enums import PollMode

__all__ = ["ResourceSpec"]


@dataclass(frozen=True, slots=True)
class ResourceSpec:
    """Which message stream to watch: one channel, one chat, or everything of a kind."""

    kind: str  # "team" | "chat"
    team_id: str | None = None
    channel_id: str | None = None
    chat_id: str | None = None
    user_id: str | None = None
    return_all: bool = False

    def __post_init__(self) -> None:
        if self.kind not in ("team", "chat"):
            raise ValueError(f"unknown resource kind {self.kind!r}")
        if self.return_all:
            return
        if self.kind == "team" and not (self.team_id and self.channel_id):
            raise ValueError("team resources need team_id and channel_id unless return_all is set")
        if self.kind == "chat" and not self.chat_id:
            raise ValueError("chat resources need chat_id unless return_all is set")

    @classmethod
    def from_settings(cls, settings: Any) -> "ResourceSpec":
        return cls(
            kind=getattr(settings, "kind", "team"),
            team_id=getattr(settings, "team_id", None),
            channel_id=getattr(settings, "channel_id", None),
            chat_id=getattr(settings, "chat_id", None),
            user_id=getattr(settings, "user_id", None),
            return_all=bool(getattr(settings, "return_all", False)),
        )

    @property
    def subscription_resource(self) -> str:
        """Resource string submitted with the create-subscription request."""
        if self.kind == "team":
            if self.return_all:
                return "/teams/getAllMessages"
            return f"/teams/{self.team_id}/channels/{self.channel_id}/messages"
        if self.return_all:
            return "/chats/getAllMessages"
        return f"/chats/{self.chat_id}/messages"

    @property
    def needs_user_id(self) -> bool:
        return self.kind == "chat" and self.return_all

    @property
    def poll_mode(self) -> PollMode:
        # only single-channel message streams expose a delta function
        if self.kind == "team" and not self.return_all:
            return PollMode.TOKEN
        return PollMode.TIMESTAMP

    def poll_path(self, api_version: str, *, user_id: str | None = None) -> str:
        if self.kind == "team":
            if self.return_all:
                resource = "/teams/getAllMessages"
            else:
                resource = f"/teams/{self.team_id}/channels/{self.channel_id}/messages/delta"
        elif self.return_all:
            uid = user_id or self.user_id
            if not uid:
                raise ValueError("user id is required to poll all chats")
            resource = f"/users/{uid}/chats/getAllMessages"
        else:
            resource = f"/chats/{self.chat_id}/messages"
        return f"/{api_version}{resource}"
