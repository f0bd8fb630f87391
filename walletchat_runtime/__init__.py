"""
WalletChat runtime for Python.

End-to-end encrypted direct messages between wallet addresses, with a
client lifecycle bound to the connected wallet and per-sender spam
gating of inbound messages.

Example::

    from walletchat_runtime import WalletChatRuntime, LocalWallet, ClientConfig

    runtime = WalletChatRuntime.from_gateway(
        "https://gateway.example.com",
        config=ClientConfig(env="dev"),
    )

    state = await runtime.connect(LocalWallet("0x..."))
    print(f"Client is {state.status}")

    chat = await runtime.start_conversation("0xAnotherWallet...")
    await runtime.send(chat, "Hello!")
    async for message in chat.iter_messages():
        print(message.sender_address, message.content)

    # Clean up
    await runtime.close()
"""

from walletchat_runtime.runtime import WalletChatRuntime
from walletchat_runtime.directory import ConversationDirectory
from walletchat_runtime.errors import (
    WalletChatError,
    IdentityUnavailable,
    SigningRejected,
    ClientInitFailed,
    SyncFailed,
    PeerUnreachable,
    NotInitialized,
    SendFailed,
    InvalidAddress,
)
from walletchat_runtime.events import EventManager, EventHandler
from walletchat_runtime.gateway import GatewayBackend
from walletchat_runtime.identity import (
    LocalWallet,
    WalletSigner,
    is_valid_address,
    normalize_address,
)
from walletchat_runtime.lifecycle import ClientLifecycleManager
from walletchat_runtime.session import Conversation, ConversationSessions
from walletchat_runtime.spam_gate import SpamGate
from walletchat_runtime.types import (
    ClientConfig,
    ClientState,
    ConversationSummary,
    DirectoryListing,
    Message,
    RuntimeEvent,
    SpamGateConfig,
)

__all__ = [
    "WalletChatRuntime",
    "ClientLifecycleManager",
    "Conversation",
    "ConversationSessions",
    "ConversationDirectory",
    "SpamGate",
    "GatewayBackend",
    "EventManager",
    "EventHandler",
    "LocalWallet",
    "WalletSigner",
    "is_valid_address",
    "normalize_address",
    "ClientConfig",
    "ClientState",
    "ConversationSummary",
    "DirectoryListing",
    "Message",
    "RuntimeEvent",
    "SpamGateConfig",
    "WalletChatError",
    "IdentityUnavailable",
    "SigningRejected",
    "ClientInitFailed",
    "SyncFailed",
    "PeerUnreachable",
    "NotInitialized",
    "SendFailed",
    "InvalidAddress",
]

__version__ = "0.1.0"
