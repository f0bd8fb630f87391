"""
Conversation sessions: one open direct-message conversation per peer.

A :class:`Conversation` holds the peer's message history plus a live
subscription task that appends streamed messages in arrival order. The
stream is started before history is read and its items are held back
until history has been appended, so nothing falls into the gap between
the two. Messages are de-duplicated by backend message id and renumbered
locally, so ``sequence_position`` is the index in :attr:`Conversation.messages`.

Inbound streamed messages from anyone other than the local account pass
through the :class:`~walletchat_runtime.spam_gate.SpamGate`; sends do not,
and a sent message is not echoed locally. It shows up when the stream
delivers it back.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from walletchat_runtime.backend import BackendClient, BackendConversation
from walletchat_runtime.errors import (
    InvalidAddress,
    NotInitialized,
    SendFailed,
    SyncFailed,
    WalletChatError,
)
from walletchat_runtime.events import EventManager
from walletchat_runtime.identity import is_valid_address, normalize_address
from walletchat_runtime.spam_gate import SpamGate
from walletchat_runtime.types import Message

logger = logging.getLogger(__name__)


class Conversation:
    """An open conversation with one peer."""

    def __init__(
        self,
        client: BackendClient,
        peer_address: str,
        handle: BackendConversation,
        spam_gate: SpamGate,
        events: EventManager | None = None,
    ) -> None:
        self._client = client
        self._peer_address = normalize_address(peer_address)
        self._own_address = normalize_address(client.address)
        self._handle = handle
        self._spam_gate = spam_gate
        self._events = events

        self._messages: list[Message] = []
        self._seen_ids: set[str] = set()
        self._history_loaded = asyncio.Event()
        self._changed = asyncio.Event()
        self._stream_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def peer_address(self) -> str:
        return self._peer_address

    @property
    def id(self) -> str:
        return self._handle.id

    @property
    def client(self) -> BackendClient:
        return self._client

    @property
    def messages(self) -> list[Message]:
        """Snapshot of the messages appended so far."""
        return list(self._messages)

    @property
    def is_open(self) -> bool:
        """Whether history has loaded and the conversation is not closed."""
        return self._history_loaded.is_set() and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_streaming(self) -> bool:
        return self._stream_task is not None and not self._stream_task.done()

    async def start(self) -> None:
        """Subscribe to the live stream, then load history in order."""
        self._stream_task = asyncio.create_task(self._stream_loop())
        try:
            await self._handle.sync()
            history = await self._handle.messages()
        except Exception:
            await self.close()
            raise

        for message in sorted(history, key=lambda m: m.sent_at_ns):
            self._append(message)
        self._history_loaded.set()
        logger.debug(
            "Loaded %d messages for conversation with %s",
            len(self._messages),
            self._peer_address,
        )

    async def send(self, content: str) -> None:
        """Forward ``content`` to the backend. No local echo."""
        if not self.is_open:
            raise NotInitialized("No conversation initialized")
        try:
            await self._handle.send(content)
        except WalletChatError:
            raise
        except Exception as e:
            raise SendFailed(f"Failed to send message to {self._peer_address}: {e}") from e

    async def iter_messages(self) -> AsyncIterator[Message]:
        """Yield every message from the start, then new ones as they arrive.

        Ends when the conversation is closed. Each call starts over from
        the first message.
        """
        index = 0
        while True:
            while index < len(self._messages):
                yield self._messages[index]
                index += 1
            if self._closed:
                return
            changed = self._changed
            await changed.wait()

    async def close(self) -> None:
        """Stop the live subscription and drop buffered state. Idempotent.

        :attr:`messages` is empty afterwards; open the peer again for a
        fresh history.
        """
        if self._closed:
            return
        self._closed = True
        task, self._stream_task = self._stream_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._messages.clear()
        self._seen_ids.clear()
        self._notify()
        logger.debug("Closed conversation with %s", self._peer_address)

    # ---- Internal ----

    async def _stream_loop(self) -> None:
        stream = self._handle.stream()
        try:
            async for message in stream:
                await self._history_loaded.wait()
                if self._closed:
                    break
                await self._receive(message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Message stream for %s ended with an error", self._peer_address)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception:
                    logger.debug("Error closing message stream", exc_info=True)

    async def _receive(self, message: Message) -> None:
        if message.id in self._seen_ids:
            return

        sender = message.sender_address
        if sender != self._own_address and self._spam_gate.should_block(sender):
            logger.info("Dropped message %s from %s", message.id, sender)
            if self._events is not None:
                await self._events.emit(
                    "message.blocked",
                    peer=self._peer_address,
                    sender=sender,
                    message_id=message.id,
                )
            return

        appended = self._append(message)
        if appended is not None and self._events is not None:
            await self._events.emit(
                "message.received", peer=self._peer_address, message=appended
            )

    def _append(self, message: Message) -> Message | None:
        if self._closed or message.id in self._seen_ids:
            return None
        self._seen_ids.add(message.id)
        positioned = message.model_copy(update={"sequence_position": len(self._messages)})
        self._messages.append(positioned)
        self._notify()
        return positioned

    def _notify(self) -> None:
        self._changed.set()
        self._changed = asyncio.Event()


class ConversationSessions:
    """Opens, caches and closes conversations for the active client."""

    def __init__(self, spam_gate: SpamGate, events: EventManager | None = None) -> None:
        self._spam_gate = spam_gate
        self._events = events
        self._client: BackendClient | None = None
        self._open: dict[str, Conversation] = {}
        self._pending: dict[tuple[int, str], asyncio.Future[Conversation]] = {}

    def get(self, peer_address: str) -> Conversation | None:
        """The open conversation with ``peer_address``, if any."""
        conversation = self._open.get(normalize_address(peer_address))
        if conversation is None or conversation.closed:
            return None
        return conversation

    async def open(self, client: BackendClient, peer_address: str) -> Conversation:
        """Resolve or create the conversation with ``peer_address``.

        Opening a peer that is already open returns the same conversation
        and does not add a second subscription.

        Raises:
            InvalidAddress: If ``peer_address`` is malformed.
            PeerUnreachable: If the backend refuses the peer.
            SyncFailed: If syncing or loading history fails.
        """
        if not is_valid_address(peer_address):
            raise InvalidAddress(f"Invalid Ethereum address format: {peer_address!r}")
        peer = normalize_address(peer_address)

        if client is not self._client:
            await self.close_all()
            self._client = client

        existing = self.get(peer)
        if existing is not None:
            return existing

        key = (id(client), peer)
        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._open_new(client, peer, key))
            self._pending[key] = pending
        return await asyncio.shield(pending)

    async def send(self, conversation: Conversation | None, content: str) -> None:
        """Send through ``conversation``.

        Raises:
            NotInitialized: If no conversation has finished opening.
            SendFailed: If the backend rejects the message.
        """
        if conversation is None:
            raise NotInitialized("No conversation initialized")
        await conversation.send(content)

    async def close(self, conversation: Conversation) -> None:
        await conversation.close()
        if self._open.get(conversation.peer_address) is conversation:
            del self._open[conversation.peer_address]

    async def close_all(self) -> None:
        """Close every conversation, e.g. when the client is replaced."""
        conversations = list(self._open.values())
        self._open.clear()
        for conversation in conversations:
            await conversation.close()
        if conversations:
            logger.info("Closed %d conversation(s)", len(conversations))

    # ---- Internal ----

    async def _open_new(
        self, client: BackendClient, peer: str, key: tuple[int, str]
    ) -> Conversation:
        try:
            try:
                await client.sync_conversations()
                handle = await client.new_dm(peer)
            except WalletChatError:
                raise
            except Exception as e:
                raise SyncFailed(f"Failed to resolve conversation with {peer}: {e}") from e

            conversation = Conversation(client, peer, handle, self._spam_gate, self._events)
            try:
                await conversation.start()
            except WalletChatError:
                raise
            except Exception as e:
                raise SyncFailed(f"Failed to load history for {peer}: {e}") from e

            if client is not self._client:
                await conversation.close()
                raise NotInitialized("Client was replaced while opening the conversation")

            self._open[peer] = conversation
            logger.info("Opened conversation with %s", peer)
            return conversation
        finally:
            self._pending.pop(key, None)
