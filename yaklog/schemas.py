"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming message writes
- Response models for API responses
"""

import re
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


CHANNEL_RE = re.compile(r"^[a-zA-Z0-9._-]{1,64}$")
SENDER_RE = re.compile(r"^[a-zA-Z0-9._:@/-]{1,64}$")

CHANNEL_RULE = "channel is required and must match [a-zA-Z0-9._-] (1-64 chars)."
SENDER_RULE = "sender is required and must match [a-zA-Z0-9._:@/-] (1-64 chars)."
METADATA_RULE = "metadata must be a JSON object when provided."


def is_valid_channel(value: str) -> bool:
    return bool(CHANNEL_RE.match(value))


def _reject_null_metadata(value: Any) -> Any:
    # Absent metadata never reaches validators; an explicit null does.
    if value is None or not isinstance(value, dict):
        raise ValueError(METADATA_RULE)
    return value


# =============================================================================
# Pydantic Request Models
# =============================================================================

class MessageCreate(BaseModel):
    """
    Body of POST /messages.

    Validates:
    - channel: [a-zA-Z0-9._-], 1-64 chars
    - sender: [a-zA-Z0-9._:@/-], 1-64 chars
    - body: non-empty after trimming (stored as sent)
    - metadata: optional JSON object
    """
    channel: str = Field(..., description="Channel the message belongs to")
    sender: str = Field(..., description="Free-text identifier of the author")
    body: str = Field(..., description="Message text")
    metadata: Optional[dict[str, Any]] = Field(
        None,
        description="Optional structured annotation"
    )

    @field_validator("channel", mode="before")
    @classmethod
    def validate_channel(cls, v: Any) -> str:
        if not isinstance(v, str) or not CHANNEL_RE.match(v):
            raise ValueError(CHANNEL_RULE)
        return v

    @field_validator("sender", mode="before")
    @classmethod
    def validate_sender(cls, v: Any) -> str:
        if not isinstance(v, str) or not SENDER_RE.match(v):
            raise ValueError(SENDER_RULE)
        return v

    @field_validator("body", mode="before")
    @classmethod
    def validate_body(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("body is required and must be a non-empty string.")
        return v

    @field_validator("metadata", mode="before")
    @classmethod
    def validate_metadata(cls, v: Any) -> dict[str, Any]:
        return _reject_null_metadata(v)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "channel": "coordination",
                    "sender": "codex",
                    "body": "Initial handoff",
                    "metadata": {"ticket": "ABC-123"}
                }
            ]
        }
    }


class MessageUpdate(BaseModel):
    """
    Body of PATCH /messages/{id}.

    Only the fields present in the request are applied; at least one of
    body or metadata is required.
    """
    body: Optional[str] = Field(None, description="Replacement message text")
    metadata: Optional[dict[str, Any]] = Field(None, description="Replacement metadata object")

    @field_validator("body", mode="before")
    @classmethod
    def validate_body(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("body must be a non-empty string when provided.")
        return v

    @field_validator("metadata", mode="before")
    @classmethod
    def validate_metadata(cls, v: Any) -> dict[str, Any]:
        return _reject_null_metadata(v)

    @model_validator(mode="after")
    def require_a_field(self) -> "MessageUpdate":
        if not self.model_fields_set & {"body", "metadata"}:
            raise ValueError("At least one of body or metadata is required.")
        return self

    def changes(self) -> dict[str, Any]:
        """Fields supplied by the caller, ready to hand to the store."""
        return {name: getattr(self, name) for name in ("body", "metadata") if name in self.model_fields_set}


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error kind")
    message: str = Field(..., description="Error description")


class MessageResponse(BaseModel):
    """A stored message as returned by the API."""
    id: int = Field(..., description="Store-assigned, strictly increasing id")
    channel: str
    sender: str
    body: str
    metadata: Optional[dict[str, Any]] = None
    created_at: str = Field(..., description="Insert time (ISO-8601 UTC)")
    updated_at: Optional[str] = Field(None, description="Last update time, null if never updated")


class MessageEnvelope(BaseModel):
    message: MessageResponse


class MessagesListResponse(BaseModel):
    """Response model for GET /messages. Messages are in ascending id order."""
    messages: list[MessageResponse] = Field(default_factory=list)
    count: int = Field(..., ge=0)


class ChannelSummary(BaseModel):
    """Per-channel aggregate for GET /channels."""
    channel: str
    message_count: int = Field(..., ge=0)
    latest_id: int
    last_message_at: Optional[str] = None


class ChannelsListResponse(BaseModel):
    """Channels ordered by latest_id, most recently active first."""
    channels: list[ChannelSummary] = Field(default_factory=list)
    count: int = Field(..., ge=0)


class ContextResponse(BaseModel):
    """JSON rendering of GET /context."""
    channel: str
    count: int = Field(..., ge=0)
    messages: list[MessageResponse] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    service: str = Field("yaklog", description="Service name")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class ServiceInfo(BaseModel):
    name: str
    version: str
    purpose: str
    health: str
    api_base: str
