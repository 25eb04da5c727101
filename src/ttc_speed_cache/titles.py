import asyncio
import logging
from typing import Awaitable, Callable

from ttc_speed_cache.models import RoutesLookup
from ttc_speed_cache.timeutil import now_ms

logger = logging.getLogger(__name__)

ROUTE_TITLES_TTL_MS = 60 * 60 * 1000


class RouteTitleCache:
    """Caches route tag -> title, refreshing from the feed once the TTL lapses.

    A failed refresh keeps serving the last known-good titles. A successful
    one is handed to ``persist`` so the lookup document stays current.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[RoutesLookup]],
        persist: Callable[[RoutesLookup, int], str | None] | None = None,
        clock: Callable[[], int] = now_ms,
        ttl_ms: int = ROUTE_TITLES_TTL_MS,
    ):
        self._fetch = fetch
        self._persist = persist
        self._clock = clock
        self.ttl_ms = ttl_ms
        self._titles: RoutesLookup = {}
        self._fetched_at_ms: int | None = None
        self.last_persisted_location: str | None = None

    @property
    def titles(self) -> RoutesLookup:
        return dict(self._titles)

    def is_fresh(self) -> bool:
        if self._fetched_at_ms is None:
            return False
        return self._clock() - self._fetched_at_ms < self.ttl_ms

    def seed(self, titles: RoutesLookup, fetched_at_ms: int | None = None):
        """Warm the cache from a previously persisted lookup."""
        if not titles:
            return
        self._titles = dict(titles)
        self._fetched_at_ms = self._clock() if fetched_at_ms is None else fetched_at_ms

    async def get_titles(self) -> RoutesLookup:
        """Return cached titles, refreshing first if stale."""
        self.last_persisted_location = None
        if self.is_fresh():
            return self.titles
        await self._refresh()
        return self.titles

    async def _refresh(self):
        as_of_ms = self._clock()
        try:
            titles = await self._fetch()
        except Exception:
            logger.warning(
                "Route title refresh failed, keeping %d cached titles",
                len(self._titles),
                exc_info=True,
            )
            return
        if not titles:
            logger.warning("Feed returned no routes, keeping %d cached titles", len(self._titles))
            return

        self._titles = dict(titles)
        self._fetched_at_ms = as_of_ms
        logger.info("Route titles refreshed (%d routes)", len(titles))

        if self._persist is None:
            return
        try:
            self.last_persisted_location = await asyncio.to_thread(
                self._persist, self.titles, as_of_ms
            )
        except Exception:
            logger.exception("Could not persist route lookup")
