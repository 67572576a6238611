"""
LibraryIdResolver - Maps a free-text topic to an upstream library identifier.

Resolution order: cached result, static table (exact then substring, in
table order), upstream search. Any non-empty answer is cached.
"""

from typing import Awaitable, Callable

from loguru import logger

from knowledge_broker.services.cache import CacheStore
from knowledge_broker.services.errors import ValidationError

# Order matters: substring matching walks this table top to bottom
DEFAULT_LIBRARY_IDS: dict[str, str] = {
    "react": "/websites/react_dev",
    "typescript": "/microsoft/TypeScript",
    "nodejs": "/nodejs/node",
    "javascript": "/websites/javascript_info",
    "python": "/python/cpython",
    "nextjs": "/vercel/next.js",
    "vue": "/vuejs/core",
    "angular": "/angular/angular",
    "web": "/websites/react_dev",
}

SearchFn = Callable[[str], Awaitable[str | None]]


def normalize_topic(topic: str) -> str:
    """Lower-case and collapse whitespace. Raises ValidationError when empty."""
    normalized = " ".join((topic or "").lower().split())
    if not normalized:
        raise ValidationError("Topic must not be empty")
    return normalized


class LibraryIdResolver:
    """
    Secondary cache for topic -> library id lookups.

    Usage:
        resolver = LibraryIdResolver(CacheStore(name="library-ids", ttl=timedelta(days=7)))
        library_id = await resolver.resolve("React Hooks", search=broker_search)
    """

    def __init__(
        self,
        store: CacheStore,
        table: dict[str, str] | None = None,
    ):
        self._store = store
        self._table = table if table is not None else DEFAULT_LIBRARY_IDS

    @property
    def store(self) -> CacheStore:
        return self._store

    def lookup_static(self, topic: str) -> str | None:
        """Exact match first, then the first table key contained in the topic."""
        normalized = normalize_topic(topic)
        if normalized in self._table:
            return self._table[normalized]
        for key, library_id in self._table.items():
            if key in normalized:
                return library_id
        return None

    async def resolve(self, topic: str, search: SearchFn | None = None) -> str | None:
        """Resolve ``topic`` to a library id, or None when nothing matches."""
        normalized = normalize_topic(topic)

        cached = await self._store.get(normalized)
        if cached:
            return cached

        library_id = self.lookup_static(normalized)
        if not library_id and search is not None:
            library_id = await search(normalized)
            if library_id:
                logger.debug(f"Resolved '{normalized}' via upstream search: {library_id}")

        if library_id:
            await self._store.set(normalized, library_id)
        return library_id or None
