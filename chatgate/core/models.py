"""Chat transport models."""

from __future__ import annotations

import time

from pydantic import BaseModel, Field


def generate_session_id() -> str:
    return f"session_{int(time.time() * 1000)}"


class ChatRequest(BaseModel):
    text: str
    domain_name: str = Field(min_length=1)
    user_name: str = "Visitor"
    source_name: str = "Chatbot"
    session_id: str = Field(default_factory=generate_session_id)
    is_draft: bool = False

    def to_upstream_payload(self) -> dict:
        return {
            "Text": self.text,
            "UserName": self.user_name,
            "SourceName": self.source_name,
            "SessionId": self.session_id,
            "DomainName": self.domain_name,
            "is_draft": self.is_draft,
        }


class NormalizedEvent(BaseModel):
    """The only shape written to the widget."""

    ai_message: str
    session_id: str
    has_followup: bool = False

    def to_sse(self) -> bytes:
        return f"data: {self.model_dump_json()}\n\n".encode("utf-8")
