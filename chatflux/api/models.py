"""API Request/Response Models.

Pydantic schemas for the read API.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, Field


class GetMessagesRequest(BaseModel):
    """Body of POST /get_messages. Range checks happen in the read coordinator."""

    roomId: Optional[str] = Field(default=None, max_length=100)
    limit: Optional[int] = None
    before: Optional[Union[int, str]] = None


class MessageRecord(BaseModel):
    originId: str
    body: str
    kind: str
    streamId: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    createdAt: int


class GetMessagesResponse(BaseModel):
    success: bool = True
    count: int
    messages: list[MessageRecord]


class HealthResponse(BaseModel):
    status: str
    components: dict[str, str]
    uptime_seconds: float
