"""
Pydantic models for the WalletChat runtime.

Wire payloads use camelCase; models expose snake_case names and accept
either form (``populate_by_name``). Backends convert raw payloads into
these models once, at the boundary.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from walletchat_runtime.identity import normalize_address


def _from_ns(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(value / 1_000_000_000, tz=timezone.utc)


# ============================================================
#  Configuration
# ============================================================


Environment = Literal["dev", "production"]


class ClientConfig(BaseModel):
    """Selects the backend network a client is created on."""

    env: Environment = "production"

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Build a config from ``WALLETCHAT_ENV`` (defaults to production).

        Raises:
            pydantic.ValidationError: If the variable names an unknown network.
        """
        return cls(env=os.environ.get("WALLETCHAT_ENV", "production"))


class SpamGateConfig(BaseModel):
    """Per-sender rate limit: ``max_messages`` per ``window_seconds``."""

    window_seconds: float = Field(3600.0, gt=0)
    max_messages: int = Field(50, ge=0)


# ============================================================
#  Messaging
# ============================================================


class Message(BaseModel):
    """A single message in a conversation."""

    id: str
    sender_address: str = Field(alias="senderAddress")
    content: str = ""
    sent_at_ns: int = Field(0, alias="sentAtNs")
    sequence_position: int = Field(0, alias="sequencePosition")

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("sender_address", mode="before")
    @classmethod
    def _normalize_sender(cls, v: Any) -> str:
        return normalize_address(v)

    @field_validator("content", mode="before")
    @classmethod
    def _stringify_content(cls, v: Any) -> str:
        # Non-text content types arrive as structured payloads
        if v is None:
            return ""
        if isinstance(v, str):
            return v
        return json.dumps(v, sort_keys=True)

    @property
    def sent_at(self) -> datetime | None:
        return _from_ns(self.sent_at_ns)


class ConversationSummary(BaseModel):
    """Directory entry for an existing direct-message conversation."""

    id: str
    peer_address: str = Field(alias="peerAddress")
    created_at_ns: int | None = Field(None, alias="createdAtNs")

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("peer_address", mode="before")
    @classmethod
    def _normalize_peer(cls, v: Any) -> str:
        return normalize_address(v)

    @property
    def created_at(self) -> datetime | None:
        return _from_ns(self.created_at_ns)


class DirectoryListing(BaseModel):
    """Result of listing conversations; ``is_stale`` marks cached fallback data."""

    conversations: list[ConversationSummary] = []
    is_stale: bool = False
    error: Exception | None = None

    model_config = {"arbitrary_types_allowed": True}


class ClientSession(BaseModel):
    """Gateway response after a client authenticates."""

    inbox_id: str = Field(alias="inboxId")
    address: str
    token: str

    model_config = {"populate_by_name": True}

    @field_validator("address", mode="before")
    @classmethod
    def _normalize_address(cls, v: Any) -> str:
        return normalize_address(v)


# ============================================================
#  Client lifecycle
# ============================================================


ClientStatus = Literal["idle", "initializing", "ready", "failed"]


class ClientState(BaseModel):
    """Snapshot of the client lifecycle."""

    status: ClientStatus = "idle"
    client: Any | None = None
    error: Exception | None = None
    generation: int = 0

    model_config = {"arbitrary_types_allowed": True, "frozen": True}

    @classmethod
    def idle(cls, generation: int = 0) -> "ClientState":
        return cls(status="idle", generation=generation)

    @classmethod
    def initializing(cls, generation: int) -> "ClientState":
        return cls(status="initializing", generation=generation)

    @classmethod
    def ready(cls, client: Any, generation: int) -> "ClientState":
        return cls(status="ready", client=client, generation=generation)

    @classmethod
    def failed(cls, error: Exception, generation: int) -> "ClientState":
        return cls(status="failed", error=error, generation=generation)

    @property
    def is_ready(self) -> bool:
        return self.status == "ready" and self.client is not None


# ============================================================
#  Spam gate
# ============================================================


class SenderWindow(BaseModel):
    """Rate counter for one sender within the current window."""

    count: int = 0
    reset_at: float


# ============================================================
#  Events
# ============================================================


class RuntimeEvent(BaseModel):
    """A notification dispatched through the event manager."""

    type: str
    data: dict[str, Any] = {}
