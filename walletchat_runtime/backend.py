"""
Contracts for the external messaging provider.

The runtime never talks to the wire directly; it drives objects that
satisfy these protocols. :mod:`walletchat_runtime.gateway` is the
bundled HTTP/WebSocket implementation.
"""

from __future__ import annotations

from typing import AsyncIterator, Iterable, Protocol

from walletchat_runtime.types import ConversationSummary, Message


class Signer(Protocol):
    """Identity handed to the backend when creating a client."""

    async def identify(self) -> str: ...

    async def sign(self, message: bytes | str) -> bytes: ...


class BackendConversation(Protocol):
    """A direct-message conversation handle owned by a backend client."""

    id: str
    peer_address: str

    async def sync(self) -> None: ...

    async def messages(self) -> list[Message]: ...

    def stream(self) -> AsyncIterator[Message]: ...

    async def send(self, content: str) -> None: ...


class BackendClient(Protocol):
    """A live session with the messaging backend, bound to one signer."""

    @property
    def address(self) -> str: ...

    async def can_message(self, addresses: Iterable[str]) -> dict[str, bool]: ...

    async def sync_conversations(self) -> None: ...

    async def list_dms(self) -> list[ConversationSummary]: ...

    async def new_dm(self, peer_address: str) -> BackendConversation: ...

    async def close(self) -> None: ...


class MessagingBackend(Protocol):
    """Factory for backend clients."""

    async def create_client(self, signer: Signer, env: str) -> BackendClient: ...
