from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


GUEST_PREFIX = "guest-"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # stored dates are UTC; a naive value only means the client was not tz aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SenderRole(str, Enum):

    GUEST = "guest"
    USER = "user"
    ADMIN = "admin"


class Conversation(BaseModel):

    model_config = ConfigDict(frozen=True)

    id: str
    guest_identifier: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _one_participant(self) -> "Conversation":
        if bool(self.guest_identifier) == bool(self.user_id):
            raise ValueError("conversation must have exactly one of guest_identifier or user_id")
        return self

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Conversation":
        return cls(
            id=str(doc.get("_id", doc.get("id"))),
            guest_identifier=doc.get("guest_identifier"),
            user_id=doc.get("user_id"),
            created_at=doc.get("created_at"),
        )


class Message(BaseModel):

    model_config = ConfigDict(frozen=True)

    id: str
    conversation_id: str
    content: str = Field(min_length=1)
    sender_role: SenderRole
    sender_id: Optional[str] = None
    created_at: datetime
    is_read: bool = False

    @field_validator("created_at")
    @classmethod
    def _utc_created_at(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value

    @model_validator(mode="after")
    def _sender_matches_role(self) -> "Message":
        if self.sender_role is SenderRole.GUEST:
            if self.sender_id is not None:
                raise ValueError("guest messages carry no sender_id")
        elif not self.sender_id:
            raise ValueError(f"{self.sender_role.value} messages require sender_id")
        return self

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Message":
        """Coerce a raw row from the store (``_id`` keyed) into a Message."""
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        if data.get("conversation_id") is not None:
            data["conversation_id"] = str(data["conversation_id"])
        return cls.model_validate(data)


class InboxRow(BaseModel):

    conversation_id: str
    display_name: str
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_count: int = 0

    @field_validator("last_message_at")
    @classmethod
    def _utc_last_message_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class Notice(BaseModel):

    level: Literal["info", "error"] = "error"
    code: str
    text: str
    # blocking: the session cannot be used until reopened
    blocking: bool = False
    retryable: bool = False


class SessionEvent(BaseModel):

    type: Literal["identity", "history", "message", "notice", "inbox", "inbox_row"]
    data: Dict[str, Any] = Field(default_factory=dict)


def guest_identifier_for(conversation_id: str) -> str:
    return f"{GUEST_PREFIX}{conversation_id}"


def visitor_display_name(conversation_id: str) -> str:
    return f"Visitor {conversation_id[:8]}"
