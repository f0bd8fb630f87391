"""
Messaging gateway backend.

HTTP/WS adapter for a messaging gateway that runs the encrypted
messaging protocol on the caller's behalf. Uses ``httpx`` for requests
and ``websockets`` for the live message stream. Wire payloads are turned
into :mod:`walletchat_runtime.types` models here and nowhere else.

Usage::

    backend = GatewayBackend("https://gateway.example.com")
    client = await backend.create_client(signer, env="dev")
    await client.sync_conversations()
    dms = await client.list_dms()
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import random
from typing import Any, AsyncIterator, Iterable
from urllib.parse import quote as url_quote

import httpx
import websockets

from walletchat_runtime.backend import Signer
from walletchat_runtime.errors import ClientInitFailed, PeerUnreachable
from walletchat_runtime.identity import normalize_address
from walletchat_runtime.types import ClientSession, ConversationSummary, Message

logger = logging.getLogger(__name__)

# Statuses the gateway uses when a peer has no messaging identity
_PEER_UNREACHABLE_STATUSES = {403, 404, 422}


def _retry_after_seconds(value: str | None) -> float:
    """Delay-seconds form of ``Retry-After``; anything else counts as 0."""
    try:
        seconds = float(value or 0)
    except ValueError:
        return 0.0
    return seconds if math.isfinite(seconds) and seconds > 0 else 0.0


class _HttpClient:
    """Thin wrapper around httpx for gateway requests."""

    def __init__(self, gateway_url: str, timeout: float = 30.0) -> None:
        self.base_url = gateway_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._token: str | None = None

    @property
    def token(self) -> str | None:
        return self._token

    def set_token(self, token: str) -> None:
        self._token = token
        self._client.headers["Authorization"] = f"Bearer {token}"

    async def request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        _retries: int = 4,
        _attempt: int = 0,
    ) -> Any:
        """Make a request to the gateway.

        Automatically retries on 429 (rate limited) with exponential backoff.
        Default: up to 4 retries with 5s → 10s → 20s → 40s delays (jittered).
        """
        response = await self._client.request(method=method, url=path, json=body)

        if response.status_code == 429 and _retries > 0:
            retry_after = _retry_after_seconds(response.headers.get("retry-after"))
            exp_delay = min(5 * (2 ** _attempt), 60)
            delay = max(retry_after, exp_delay)
            delay *= 0.8 + random.random() * 0.4
            logger.info("Rate limited (429), retrying in %.1fs (attempt %d/%d)", delay, _attempt + 1, _attempt + _retries)
            await asyncio.sleep(delay)
            return await self.request(method, path, body, _retries - 1, _attempt + 1)

        # Don't use raise_for_status(); it puts the full response body
        # in the exception message.
        if response.status_code >= 400:
            try:
                err_data = response.json()
                err_msg = err_data.get("error", err_data.get("message", "Request failed"))
            except Exception:
                err_msg = "Request failed"
            raise httpx.HTTPStatusError(
                f"Gateway request failed ({response.status_code}): {err_msg}",
                request=response.request,
                response=response,
            )

        if response.status_code == 204:
            return {}

        return response.json()

    async def close(self) -> None:
        await self._client.aclose()


class GatewayConversation:
    """A direct-message conversation on the gateway."""

    def __init__(self, http: _HttpClient, summary: ConversationSummary) -> None:
        self._http = http
        self.id = summary.id
        self.peer_address = summary.peer_address
        self.created_at_ns = summary.created_at_ns

    @property
    def _path(self) -> str:
        return f"/v1/conversations/{url_quote(self.id, safe='')}"

    async def sync(self) -> None:
        await self._http.request("POST", f"{self._path}/sync")

    async def messages(self) -> list[Message]:
        data = await self._http.request("GET", f"{self._path}/messages")
        return [Message(**m) for m in data.get("messages", [])]

    async def send(self, content: str) -> None:
        await self._http.request("POST", f"{self._path}/messages", {"content": content})

    def stream_url(self) -> str:
        ws_base = self._http.base_url.replace("http://", "ws://").replace("https://", "wss://")
        url = f"{ws_base}{self._path}/stream"
        if self._http.token:
            url += f"?token={url_quote(self._http.token, safe='')}"
        return url

    async def stream(self) -> AsyncIterator[Message]:
        """Yield messages pushed by the gateway until the socket closes."""
        async with websockets.connect(self.stream_url()) as ws:
            logger.debug("Message stream connected for %s", self.id)
            async for raw in ws:
                message = _parse_stream_frame(raw)
                if message is not None:
                    yield message


def _parse_stream_frame(raw: str | bytes) -> Message | None:
    try:
        data = json.loads(raw)
        if data.get("type") != "message":
            return None
        return Message(**data["message"])
    except Exception:
        logger.debug("Ignoring non-message stream frame")
        return None


class GatewayClient:
    """Authenticated gateway session for one wallet address."""

    def __init__(self, http: _HttpClient, session: ClientSession, env: str) -> None:
        self._http = http
        self._session = session
        self.env = env

    @property
    def address(self) -> str:
        return self._session.address

    @property
    def inbox_id(self) -> str:
        return self._session.inbox_id

    async def can_message(self, addresses: Iterable[str]) -> dict[str, bool]:
        """Which of ``addresses`` can receive messages, keyed by lowercase address."""
        data = await self._http.request(
            "POST", "/v1/can-message", {"addresses": [normalize_address(a) for a in addresses]}
        )
        return {normalize_address(k): bool(v) for k, v in data.get("results", {}).items()}

    async def sync_conversations(self) -> None:
        await self._http.request("POST", "/v1/conversations/sync")

    async def list_dms(self) -> list[ConversationSummary]:
        data = await self._http.request("GET", "/v1/conversations?type=dm")
        return [ConversationSummary(**c) for c in data.get("conversations", [])]

    async def new_dm(self, peer_address: str) -> GatewayConversation:
        """Find or create the DM with ``peer_address``.

        Raises:
            PeerUnreachable: If the gateway reports the peer can't be messaged.
        """
        try:
            data = await self._http.request(
                "POST", "/v1/conversations/dm", {"peerAddress": normalize_address(peer_address)}
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code in _PEER_UNREACHABLE_STATUSES:
                raise PeerUnreachable(str(e)) from e
            raise
        return GatewayConversation(self._http, ConversationSummary(**data))

    async def close(self) -> None:
        await self._http.close()


class GatewayBackend:
    """Creates :class:`GatewayClient` sessions via challenge signing."""

    def __init__(self, gateway_url: str, timeout: float = 30.0) -> None:
        self._gateway_url = gateway_url.rstrip("/")
        self._timeout = timeout

    async def create_client(self, signer: Signer, env: str) -> GatewayClient:
        """Authenticate ``signer`` with the gateway on network ``env``.

        The gateway issues a challenge, the wallet signs it, and the
        signed challenge is exchanged for a session token.

        Raises:
            IdentityUnavailable: If the signer has no address.
            SigningRejected: If the wallet refuses to sign.
            ClientInitFailed: If the gateway doesn't issue a challenge.
            httpx.HTTPStatusError: If the gateway rejects a request.
        """
        address = await signer.identify()
        http = _HttpClient(self._gateway_url, timeout=self._timeout)
        try:
            data = await http.request(
                "POST", "/v1/clients/challenge", {"address": address, "env": env}
            )
            challenge = data.get("challenge")
            if not challenge:
                raise ClientInitFailed("Gateway did not return a signing challenge")

            signature = await signer.sign(challenge)
            data = await http.request(
                "POST",
                "/v1/clients",
                {
                    "address": address,
                    "env": env,
                    "challenge": challenge,
                    "signature": "0x" + signature.hex(),
                },
            )
            session = ClientSession(**data)
        except BaseException:
            await http.close()
            raise

        http.set_token(session.token)
        logger.info("Gateway session created for %s (%s)", session.address, env)
        return GatewayClient(http, session, env)
