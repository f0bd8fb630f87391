"""
Wallet identity adapter.

Wraps a wallet's account and signing capability into the signer shape
the messaging backend expects (``identify`` + ``sign``).
"""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol

from walletchat_runtime.errors import IdentityUnavailable, SigningRejected

logger = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def normalize_address(value: Any) -> str:
    """Lowercase an address for use as a lookup key. Never raises."""
    if value is None:
        return ""
    return str(value).strip().lower()


def is_valid_address(value: Any) -> bool:
    """Whether ``value`` is ``0x`` followed by 40 hex characters."""
    return isinstance(value, str) and bool(ADDRESS_RE.match(value.strip()))


class Wallet(Protocol):
    """What the runtime needs from a connected wallet."""

    address: str | None

    async def sign_message(self, message: bytes) -> bytes | str: ...


def _signature_bytes(signature: Any) -> bytes:
    if isinstance(signature, (bytes, bytearray, memoryview)):
        return bytes(signature)
    if isinstance(signature, str):
        hex_part = signature[2:] if signature.startswith(("0x", "0X")) else signature
        try:
            return bytes.fromhex(hex_part)
        except ValueError as e:
            raise SigningRejected("Wallet returned a malformed signature") from e
    raise SigningRejected(f"Wallet returned an unsupported signature type: {type(signature).__name__}")


class WalletSigner:
    """Signer bound to one wallet account.

    The account address is captured once at construction. When the wallet
    switches accounts, build a new signer rather than reusing this one.
    """

    def __init__(self, wallet: Wallet) -> None:
        self._wallet = wallet
        raw = getattr(wallet, "address", None)
        self._address = normalize_address(raw) if raw else None

    @property
    def wallet(self) -> Wallet:
        return self._wallet

    @property
    def address(self) -> str | None:
        """Lowercased account address, or ``None`` if the wallet had none."""
        return self._address

    async def identify(self) -> str:
        """Return the account address.

        Raises:
            IdentityUnavailable: If the wallet exposes no account.
        """
        if not self._address:
            raise IdentityUnavailable("No address found on the connected wallet")
        return self._address

    async def sign(self, message: bytes | str) -> bytes:
        """Sign ``message`` with the wallet, prompting the user if needed.

        String messages are UTF-8 encoded first. Hex-string signatures are
        decoded to raw bytes.

        Raises:
            SigningRejected: If the wallet denies the request, errors, or
                returns no usable signature.
        """
        data = message.encode("utf-8") if isinstance(message, str) else bytes(message)
        try:
            signature = await self._wallet.sign_message(data)
        except Exception as e:
            logger.debug("Signing request for %s failed: %s", self._address, e)
            raise SigningRejected(f"Wallet rejected signing request: {e}") from e
        if not signature:
            raise SigningRejected("Wallet returned an empty signature")
        return _signature_bytes(signature)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WalletSigner):
            return NotImplemented
        return self._wallet is other._wallet and self._address == other._address

    def __hash__(self) -> int:
        return hash((id(self._wallet), self._address))

    def __repr__(self) -> str:
        return f"WalletSigner(address={self._address!r})"


class LocalWallet:
    """Wallet backed by a raw private key, signing EIP-191 personal messages.

    Requires the ``signing`` extra (``eth-account``).
    """

    def __init__(self, private_key: str) -> None:
        try:
            from eth_account import Account
        except ImportError:
            raise RuntimeError(
                "eth-account not installed, install with: pip install walletchat-runtime[signing]"
            )
        self._private_key = private_key
        self.address: str | None = Account.from_key(private_key).address

    async def sign_message(self, message: bytes) -> bytes:
        from eth_account import Account
        from eth_account.messages import encode_defunct

        signed = Account.sign_message(encode_defunct(primitive=message), self._private_key)
        return bytes(signed.signature)
