"""Data models for conversation memory."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Message(BaseModel):
    """A single conversation message. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "bot"]
    text: str
    timestamp: int | None = None  # epoch ms; required once stored in memory

    def to_history_item(self) -> dict[str, Any]:
        """Wire shape used in ``conversation_history``."""
        return {"role": self.role, "content": self.text, "timestamp": self.timestamp}


class MemoryContext(BaseModel):
    """Server-supplied summary of the conversation so far.

    Replaced wholesale each time the endpoint returns one; never merged.
    """

    last_topic: str | None = None
    user_interests: list[str] = Field(default_factory=list)
    conversation_summary: str = ""

    @field_validator("user_interests", mode="before")
    @classmethod
    def _null_interests(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("conversation_summary", mode="before")
    @classmethod
    def _null_summary(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("user_interests")
    @classmethod
    def _dedupe_interests(cls, value: list[str]) -> list[str]:
        # ordered set: keep first occurrence
        return list(dict.fromkeys(value))
