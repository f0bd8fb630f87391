"""
Exception hierarchy for the WalletChat runtime.

Identity and client-lifecycle failures are normally captured into
:class:`~walletchat_runtime.types.ClientState` rather than raised, so
callers observe them through state. Per-operation failures (open, send)
are raised to the immediate caller and never retried here.
"""

from __future__ import annotations


class WalletChatError(RuntimeError):
    """Base class for every error raised by the runtime."""


class IdentityUnavailable(WalletChatError):
    """The wallet exposes no account address."""


class SigningRejected(WalletChatError):
    """The wallet denied or failed a signing request."""


class ClientInitFailed(WalletChatError):
    """The messaging backend could not create a client."""


class SyncFailed(WalletChatError):
    """Synchronising with the messaging backend failed."""


class PeerUnreachable(WalletChatError):
    """The peer address cannot receive messages."""


class NotInitialized(WalletChatError):
    """An operation needed a client or open conversation that isn't there."""


class SendFailed(WalletChatError):
    """The backend rejected an outbound message."""


class InvalidAddress(WalletChatError, ValueError):
    """A peer address is not ``0x`` followed by 40 hex characters."""
