"""Pydantic schemas for the inbound message boundary."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Channel = Literal["whatsapp", "business_chat", "web"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Attachment(_CamelModel):
    type: str
    url: str
    name: str | None = None


class UserProfile(_CamelModel):
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    locale: str | None = None
    timezone: str | None = None
    attributes: dict[str, str] = Field(default_factory=dict)


class MessageBody(_CamelModel):
    text: str = Field(default="", max_length=8000)
    attachments: list[Attachment] = Field(default_factory=list)


class InboundMessage(_CamelModel):
    """A channel-neutral inbound message produced by a channel adapter."""

    channel: Channel
    conversation_id: str = Field(alias="conversationId", min_length=1, max_length=128)
    visitor_id: str = Field(alias="visitorId", min_length=1)
    contact_id: str | None = Field(default=None, alias="contactId")
    user_profile: UserProfile = Field(default_factory=UserProfile, alias="userProfile")
    message: MessageBody
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tenant_id: str = Field(default="default", alias="tenantId")

    @field_validator("timestamp", mode="before")
    @classmethod
    def _epoch_millis(cls, value):
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        return value


class IngestAck(BaseModel):
    status: Literal["accepted", "duplicate"]
    conversation_id: str
