# signals/message.py
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class IncomingMessage(BaseModel):
    """
    Transient envelope for one received chat message.

    Created by a session transport on receipt, read-only to the orchestrator
    and discarded once the reply cycle completes.
    """
    model_config = ConfigDict(frozen=True)

    sender_id: str
    body: str
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Transport context needed to route the reply
    source: str = "whatsapp"
    chat_id: Optional[str] = None
    message_id: Optional[str] = None
    sender_name: Optional[str] = None
    is_group: bool = False

    def is_blank(self) -> bool:
        """True when the body carries no text worth relaying."""
        return not self.body or not self.body.strip()

    def normalized_body(self) -> str:
        """Trimmed, lower-cased body used as the completion prompt."""
        return self.body.strip().lower()

    def key(self) -> str:
        """Idempotency key from source and message id."""
        return f"{self.source}:{self.message_id or self.sender_id}"

    def reply_target(self) -> str:
        """Chat the reply goes to; private chats fall back to the sender."""
        return self.chat_id or self.sender_id
