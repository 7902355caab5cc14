"""Header-only view of an inbound message.

Only the handful of headers the engine needs are kept; the body is never read.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class MessageHeaders(BaseModel):
    """The recognized headers of an inbound message."""

    from_: str = Field(default="", description="From header")
    to: str = Field(default="", description="To header")
    cc: str = Field(default="", description="Cc header")
    reply_to: str = Field(default="", description="Reply-To header")
    subject: str = Field(default="", description="Subject header, decoded")
    message_id: str = Field(default="unknown", description="Message-ID header")
