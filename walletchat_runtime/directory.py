"""
Conversation directory: lists the active client's direct messages.
"""

from __future__ import annotations

import logging

from walletchat_runtime.backend import BackendClient
from walletchat_runtime.errors import SyncFailed
from walletchat_runtime.types import ConversationSummary, DirectoryListing

logger = logging.getLogger(__name__)


class ConversationDirectory:
    """Sync-then-read listing with a stale fallback.

    Every :meth:`list` call performs a fresh sync followed by a read. If
    either step fails, the last good listing for the same client is
    returned with ``is_stale=True`` instead of raising.
    """

    def __init__(self) -> None:
        self._client: BackendClient | None = None
        self._cached: list[ConversationSummary] = []

    async def list(self, client: BackendClient) -> DirectoryListing:
        if client is not self._client:
            self._client = client
            self._cached = []

        try:
            await client.sync_conversations()
            conversations = await client.list_dms()
        except Exception as e:
            error = e if isinstance(e, SyncFailed) else SyncFailed(f"Error loading conversations: {e}")
            if error is not e:
                error.__cause__ = e
            logger.warning("Conversation sync failed, serving %d cached entries: %s", len(self._cached), e)
            return DirectoryListing(conversations=list(self._cached), is_stale=True, error=error)

        self._cached = list(conversations)
        return DirectoryListing(conversations=list(conversations))

    def reset(self) -> None:
        """Forget the cached listing."""
        self._client = None
        self._cached = []
