"""
Client lifecycle management.

Owns the single active backend client for the current identity. Every
identity change bumps a generation counter; a creation that finishes
under an older generation is thrown away, and any client it produced is
closed, so overlapping initialisations can complete in any order.

Failures never propagate out of this module. They are captured as a
``failed`` :class:`ClientState` for callers to observe.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from walletchat_runtime.backend import BackendClient, MessagingBackend, Signer
from walletchat_runtime.errors import ClientInitFailed, WalletChatError
from walletchat_runtime.events import EventManager
from walletchat_runtime.types import ClientConfig, ClientState

logger = logging.getLogger(__name__)

TeardownHook = Callable[[Any], Awaitable[None]]


def _same_identity(a: Signer | None, b: Signer | None) -> bool:
    if a is None or b is None:
        return a is b
    return a is b or a == b


class ClientLifecycleManager:
    """Creates, replaces and tears down the backend client."""

    def __init__(
        self,
        backend: MessagingBackend,
        config: ClientConfig | None = None,
        events: EventManager | None = None,
        on_teardown: TeardownHook | None = None,
    ) -> None:
        self._backend = backend
        self._config = config or ClientConfig()
        self._events = events
        self._on_teardown = on_teardown

        self._generation = 0
        self._identity: Signer | None = None
        self._client: BackendClient | None = None
        self._state = ClientState.idle()
        self._pending: asyncio.Future[ClientState] | None = None

    @property
    def client(self) -> BackendClient | None:
        """The ready client, if any."""
        return self._client

    @property
    def identity(self) -> Signer | None:
        return self._identity

    @property
    def generation(self) -> int:
        return self._generation

    def current_state(self) -> ClientState:
        return self._state

    async def initialize(self, identity: Signer | None) -> ClientState:
        """Bring the client in line with ``identity``.

        Passing ``None`` discards the client and returns to idle. Calling
        again with the current identity returns the existing ready state,
        or waits for the creation already in flight.
        """
        if identity is None:
            await self.reset()
            return self._state

        if _same_identity(identity, self._identity):
            if self._state.is_ready:
                return self._state
            if self._pending is not None and not self._pending.done():
                return await self._await_latest(self._pending)

        self._generation += 1
        self._identity = identity
        task = asyncio.ensure_future(self._create(identity, self._generation))
        self._pending = task
        return await self._await_latest(task)

    def set_identity(self, identity: Signer | None) -> "asyncio.Task[ClientState]":
        """Schedule :meth:`initialize` on the running loop.

        For wallet change callbacks that can't await. The returned task
        resolves to the lifecycle state once this change settles.
        """
        return asyncio.ensure_future(self.initialize(identity))

    async def reset(self) -> None:
        """Discard the identity and client and return to idle."""
        self._generation += 1
        self._identity = None
        self._pending = None
        await self._discard_client()
        await self._set_state(ClientState.idle(self._generation))

    async def close(self) -> None:
        await self.reset()

    # ---- Internal ----

    async def _await_latest(self, task: asyncio.Future[ClientState]) -> ClientState:
        # A superseded caller follows the newest creation instead.
        state = await asyncio.shield(task)
        pending = self._pending
        if pending is not None and pending is not task:
            return await self._await_latest(pending)
        return state

    async def _create(self, identity: Signer, generation: int) -> ClientState:
        if generation != self._generation:
            return self._state
        await self._discard_client()
        if generation != self._generation:
            return self._state
        await self._set_state(ClientState.initializing(generation))

        try:
            client = await self._backend.create_client(identity, env=self._config.env)
        except WalletChatError as e:
            error: Exception = e
        except Exception as e:
            error = ClientInitFailed(f"Failed to initialize client: {e}")
            error.__cause__ = e
        else:
            if generation != self._generation:
                logger.debug("Discarding stale client from generation %d", generation)
                await self._close_client(client)
                return self._state
            self._client = client
            await self._set_state(ClientState.ready(client, generation))
            logger.info("Client initialized for %s (%s)", client.address, self._config.env)
            return self._state

        if generation != self._generation:
            logger.debug("Ignoring stale failure from generation %d: %s", generation, error)
            return self._state
        logger.error("Failed to initialize client: %s", error)
        await self._set_state(ClientState.failed(error, generation))
        return self._state

    async def _discard_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        if self._on_teardown is not None:
            try:
                await self._on_teardown(client)
            except Exception:
                logger.exception("Client teardown hook failed")
        await self._close_client(client)

    async def _close_client(self, client: BackendClient) -> None:
        try:
            await client.close()
        except Exception:
            logger.debug("Error closing client", exc_info=True)

    async def _set_state(self, state: ClientState) -> None:
        self._state = state
        if self._events is not None:
            client = state.client
            await self._events.emit(
                "client.state",
                status=state.status,
                generation=state.generation,
                address=getattr(client, "address", None),
                error=state.error,
            )
