"""Account directory — cached lookups of account and alliance data.

Account game documents (``users/{uid}/games/{world}``) carry the
account's alliance id; the alliance document carries research levels and
the alliance wonder.  Both change rarely, so reads go through a TTL cache
that callers inject.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from polis.persistence import paths
from polis.persistence.document_store import DocumentStore
from polis.util.cache import TTLCache

log = logging.getLogger(__name__)


class AccountDirectory:
    """Read-through cache over account game docs and alliances.

    Args:
        store: Document store.
        cache: TTL cache shared by the services of one process.
    """

    def __init__(self, store: DocumentStore, cache: TTLCache) -> None:
        self._store = store
        self._cache = cache

    async def game(self, world_id: str, account_id: Optional[str]) -> Optional[dict[str, Any]]:
        """The account's per-world game document (uncached; points change often)."""
        if not account_id:
            return None
        return await self._store.get(paths.account_game(account_id, world_id))

    async def username(self, account_id: Optional[str]) -> str:
        if not account_id:
            return ""

        async def load() -> str:
            account = await self._store.get(paths.account(account_id))
            return (account or {}).get("username", "")

        return await self._cache.get_or_load(("username", account_id), load)

    async def alliance(self, world_id: str, account_id: Optional[str]) -> Optional[dict[str, Any]]:
        """Full alliance document of the account, or ``None``."""
        if not account_id:
            return None

        async def load() -> Optional[dict[str, Any]]:
            game = await self._store.get(paths.account_game(account_id, world_id))
            alliance_id = (game or {}).get("alliance")
            if not alliance_id:
                return None
            data = await self._store.get(paths.alliance(world_id, alliance_id))
            if data is None:
                log.warning("Account %s refers to missing alliance %s", account_id, alliance_id)
                return None
            return dict(data, id=alliance_id)

        return await self._cache.get_or_load(("alliance", world_id, account_id), load)

