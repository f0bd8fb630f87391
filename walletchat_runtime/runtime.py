"""
WalletChat runtime: the composition root.

Wires a wallet into a signer, the signer into the client lifecycle, and
the ready client into conversation sessions and the directory. The spam
gate is created here (or injected) and shared by every conversation.

Usage::

    runtime = WalletChatRuntime.from_gateway("https://gateway.example.com")
    state = await runtime.connect(wallet)
    if state.is_ready:
        chat = await runtime.start_conversation("0xPeer...")
        await runtime.send(chat, "gm")
    await runtime.close()
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from walletchat_runtime.backend import BackendClient, MessagingBackend
from walletchat_runtime.directory import ConversationDirectory
from walletchat_runtime.errors import InvalidAddress, NotInitialized, PeerUnreachable
from walletchat_runtime.events import EventHandler, EventManager
from walletchat_runtime.gateway import GatewayBackend
from walletchat_runtime.identity import Wallet, WalletSigner, is_valid_address, normalize_address
from walletchat_runtime.lifecycle import ClientLifecycleManager
from walletchat_runtime.session import Conversation, ConversationSessions
from walletchat_runtime.spam_gate import SpamGate
from walletchat_runtime.types import ClientConfig, ClientState, DirectoryListing

logger = logging.getLogger(__name__)


class WalletChatRuntime:
    """
    Wallet-to-wallet direct messaging with sender gating.

    Exposes the client readiness state, conversation open/send/close,
    directory listings and the spam gate to the presentation layer.
    """

    def __init__(
        self,
        backend: MessagingBackend,
        config: ClientConfig | None = None,
        spam_gate: SpamGate | None = None,
    ) -> None:
        self._events = EventManager()
        self.spam_gate = spam_gate or SpamGate()
        self.directory = ConversationDirectory()
        self.sessions = ConversationSessions(self.spam_gate, events=self._events)
        self.lifecycle = ClientLifecycleManager(
            backend,
            config or ClientConfig(),
            events=self._events,
            on_teardown=self._on_client_teardown,
        )

    @classmethod
    def from_gateway(
        cls,
        gateway_url: str,
        config: ClientConfig | None = None,
        spam_gate: SpamGate | None = None,
    ) -> "WalletChatRuntime":
        """Build a runtime backed by :class:`GatewayBackend`."""
        return cls(GatewayBackend(gateway_url), config=config, spam_gate=spam_gate)

    @property
    def state(self) -> ClientState:
        return self.lifecycle.current_state()

    @property
    def is_ready(self) -> bool:
        return self.state.is_ready

    @property
    def address(self) -> str | None:
        """Address of the connected wallet, if any."""
        identity = self.lifecycle.identity
        return getattr(identity, "address", None)

    async def connect(self, wallet: Wallet | None) -> ClientState:
        """Bind the runtime to ``wallet`` (or disconnect when ``None``).

        Reconnecting the same wallet on the same account is a no-op.
        Never raises; inspect the returned state for failures.
        """
        signer = WalletSigner(wallet) if wallet is not None else None
        return await self.lifecycle.initialize(signer)

    async def disconnect(self) -> None:
        await self.lifecycle.reset()

    async def close(self) -> None:
        await self.lifecycle.close()
        logger.info("WalletChat runtime closed")

    # ---- Conversations ----

    async def can_message(self, addresses: Iterable[str]) -> dict[str, bool]:
        """Check which addresses can receive messages. Empty on error."""
        client = self._require_client()
        try:
            return await client.can_message(list(addresses))
        except Exception as e:
            logger.error("Error checking can_message: %s", e)
            return {}

    async def start_conversation(self, peer_address: str) -> Conversation:
        """Validate a new peer, confirm it can be messaged, then open it.

        Raises:
            InvalidAddress: If the address is malformed.
            PeerUnreachable: If it is the local account or can't receive messages.
        """
        if not is_valid_address(peer_address):
            raise InvalidAddress(f"Invalid Ethereum address format: {peer_address!r}")
        peer = normalize_address(peer_address)
        if peer == self.address:
            raise PeerUnreachable("You cannot message yourself")

        reachable = await self.can_message([peer])
        if not reachable.get(peer):
            raise PeerUnreachable(f"{peer} cannot receive messages yet")
        return await self.open_conversation(peer)

    async def open_conversation(self, peer_address: str) -> Conversation:
        return await self.sessions.open(self._require_client(), peer_address)

    async def send(self, conversation: Conversation | None, content: str) -> None:
        await self.sessions.send(conversation, content)

    async def close_conversation(self, conversation: Conversation) -> None:
        await self.sessions.close(conversation)

    async def list_conversations(self) -> DirectoryListing:
        return await self.directory.list(self._require_client())

    # ---- Event shortcuts ----

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe to a specific event type."""
        self._events.subscribe(event_type, handler)

    def off(self, event_type: str, handler: EventHandler | None = None) -> None:
        """Unsubscribe from an event type."""
        self._events.unsubscribe(event_type, handler)

    # ---- Internal ----

    def _require_client(self) -> BackendClient:
        client = self.lifecycle.client
        if client is None or not self.state.is_ready:
            raise NotInitialized(f"Client is not ready (status: {self.state.status})")
        return client

    async def _on_client_teardown(self, client: Any) -> None:
        await self.sessions.close_all()
        self.directory.reset()
