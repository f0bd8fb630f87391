"""
In-memory fakes for the messaging backend and wallet.

The fake conversation stream is fed through an ``asyncio.Queue`` so tests
control exactly when upstream events arrive.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, AsyncIterator, Iterable

import pytest

from walletchat_runtime.errors import PeerUnreachable
from walletchat_runtime.types import ConversationSummary, Message

ALICE = "0x" + "aa" * 20
BOB = "0x" + "bb" * 20
CAROL = "0x" + "cc" * 20


def make_message(msg_id: str, sender: str, content: str = "hi", sent_at_ns: int = 0) -> Message:
    return Message(id=msg_id, sender_address=sender, content=content, sent_at_ns=sent_at_ns)


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll ``predicate`` until it holds or ``timeout`` passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class FakeWallet:
    def __init__(self, address: str | None, signature: Any = b"\x01" * 65, fail: bool = False) -> None:
        self.address = address
        self.signature = signature
        self.fail = fail
        self.signed: list[bytes] = []

    async def sign_message(self, message: bytes) -> Any:
        self.signed.append(message)
        if self.fail:
            raise PermissionError("User rejected the request")
        return self.signature


class FakeConversation:
    def __init__(self, peer_address: str, history: Iterable[Message] = ()) -> None:
        self.id = f"dm-{peer_address}"
        self.peer_address = peer_address
        self.history = list(history)
        self.queue: asyncio.Queue[Message] = asyncio.Queue()
        self.sent: list[str] = []
        self.stream_calls = 0
        self.fail_send = False

    async def sync(self) -> None:
        pass

    async def messages(self) -> list[Message]:
        return list(self.history)

    async def stream(self) -> AsyncIterator[Message]:
        self.stream_calls += 1
        while True:
            yield await self.queue.get()

    async def send(self, content: str) -> None:
        if self.fail_send:
            raise ConnectionError("network down")
        self.sent.append(content)


class FakeClient:
    def __init__(self, address: str) -> None:
        self.address = address
        self.conversations: dict[str, FakeConversation] = {}
        self.reachable: set[str] = set()
        self.unreachable: set[str] = set()
        self.fail_sync = False
        self.fail_can_message = False
        self.closed = False
        self.new_dm_calls = 0

    def conversation(self, peer: str, history: Iterable[Message] = ()) -> FakeConversation:
        conv = FakeConversation(peer, history)
        self.conversations[peer] = conv
        return conv

    async def can_message(self, addresses: Iterable[str]) -> dict[str, bool]:
        if self.fail_can_message:
            raise ConnectionError("gateway unavailable")
        return {a.lower(): a.lower() in self.reachable for a in addresses}

    async def sync_conversations(self) -> None:
        if self.fail_sync:
            raise ConnectionError("sync failed")

    async def list_dms(self) -> list[ConversationSummary]:
        return [
            ConversationSummary(id=c.id, peer_address=c.peer_address, created_at_ns=1)
            for c in self.conversations.values()
        ]

    async def new_dm(self, peer_address: str) -> FakeConversation:
        self.new_dm_calls += 1
        if peer_address in self.unreachable:
            raise PeerUnreachable(f"{peer_address} is not on the network")
        conv = self.conversations.get(peer_address)
        if conv is None:
            conv = self.conversation(peer_address)
        return conv

    async def close(self) -> None:
        self.closed = True


class FakeBackend:
    """Backend whose client creation can be held per address."""

    def __init__(self) -> None:
        self.hold = False
        self.gates: dict[str, asyncio.Event] = defaultdict(asyncio.Event)
        self.fail_for: set[str] = set()
        self.created: list[FakeClient] = []
        self.create_calls = 0
        self.envs: list[str] = []

    def release(self, address: str) -> None:
        self.gates[address].set()

    async def create_client(self, signer: Any, env: str) -> FakeClient:
        self.create_calls += 1
        self.envs.append(env)
        address = await signer.identify()
        if self.hold:
            await self.gates[address].wait()
        if address in self.fail_for:
            raise ConnectionError("backend unavailable")
        client = FakeClient(address)
        self.created.append(client)
        return client


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
