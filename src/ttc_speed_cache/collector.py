import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

import httpx

from ttc_speed_cache.aggregate import aggregate
from ttc_speed_cache.client import FeedClient, FeedError
from ttc_speed_cache.store import PartitionedStore
from ttc_speed_cache.timeutil import now_ms
from ttc_speed_cache.titles import RouteTitleCache

logger = logging.getLogger(__name__)

COLLECT_INTERVAL_S = 60
DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class CycleResult:
    success: bool
    as_of_ms: int
    partition_key: str
    records_collected: int = 0
    speeds_location: str | None = None
    routes_location: str | None = None
    message: str | None = None
    error: str | None = None


@dataclass
class RunSummary:
    cycles: int = 0
    successful_cycles: int = 0
    records_collected: int = 0
    stopped_by: str | None = None

    def add(self, result: CycleResult | None):
        self.cycles += 1
        if result is not None and result.success:
            self.successful_cycles += 1
            self.records_collected += result.records_collected


class CollectionDriver:
    """Runs fetch -> aggregate -> persist cycles against an injected store.

    ``run_cycle`` is the single-shot mode used by the trigger endpoint;
    ``run`` repeats it on a fixed interval for the standalone collector.
    """

    def __init__(
        self,
        feed: FeedClient,
        store: PartitionedStore,
        titles: RouteTitleCache | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.feed = feed
        self.store = store
        self.titles = titles
        self._clock = clock

    async def run_cycle(self) -> CycleResult:
        as_of_ms = self._clock()
        partition_key = self.store.partition_key_for(as_of_ms)

        try:
            observations = await self.feed.fetch_vehicle_observations()
        except (httpx.HTTPError, FeedError) as e:
            logger.warning("Vehicle fetch failed, nothing collected this cycle: %s", e)
            return CycleResult(
                success=False,
                as_of_ms=as_of_ms,
                partition_key=partition_key,
                message="No data collected (feed may be down)",
                error=str(e) or type(e).__name__,
            )

        records = aggregate(observations, as_of_ms)
        if not records:
            logger.warning(
                "No route speeds collected (%d vehicles in feed)", len(observations)
            )
            return CycleResult(
                success=False,
                as_of_ms=as_of_ms,
                partition_key=partition_key,
                message="No data collected (no vehicles reporting a valid speed)",
            )

        refresh = (
            asyncio.create_task(self.titles.get_titles()) if self.titles is not None else None
        )

        result = CycleResult(
            success=True,
            as_of_ms=as_of_ms,
            partition_key=partition_key,
            records_collected=len(records),
        )
        try:
            try:
                result.speeds_location = await asyncio.to_thread(
                    self.store.append, partition_key, records
                )
            except Exception as e:
                logger.exception(
                    "Could not persist %d records to %s", len(records), partition_key
                )
                result.success = False
                result.message = "Failed to persist speed records"
                result.error = str(e) or type(e).__name__

            if refresh is not None:
                try:
                    await refresh
                    result.routes_location = self.titles.last_persisted_location
                except Exception:
                    logger.exception("Route title refresh failed")
        finally:
            # Only left running when this cycle was cancelled.
            if refresh is not None and not refresh.done():
                refresh.cancel()

        if result.success:
            logger.info(
                "Collected %d route speed records into %s",
                result.records_collected,
                result.speeds_location,
            )
        return result

    async def run(
        self,
        duration_days: float,
        stop_event: asyncio.Event | None = None,
        interval_s: float = COLLECT_INTERVAL_S,
    ) -> RunSummary:
        """Collect every ``interval_s`` until the duration lapses or ``stop_event`` is set.

        The stop event is only honoured between cycles; a cycle in flight
        always runs to completion.
        """
        if stop_event is None:
            stop_event = asyncio.Event()
        summary = RunSummary()
        start_ms = self._clock()
        budget_ms = duration_days * DAY_MS

        while True:
            cycle_start_ms = self._clock()
            try:
                result = await self.run_cycle()
            except Exception:
                logger.exception("Collection cycle failed")
                result = None
            summary.add(result)

            if self._clock() - start_ms >= budget_ms:
                logger.info("Target duration of %s days reached", duration_days)
                summary.stopped_by = "duration"
                break
            if stop_event.is_set():
                summary.stopped_by = "signal"
                break

            delay_s = max(0.0, cycle_start_ms / 1000 + interval_s - self._clock() / 1000)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay_s)
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                summary.stopped_by = "signal"
                break

        logger.info(
            "Collection stopped (%s): %d cycles, %d successful, %d records",
            summary.stopped_by,
            summary.cycles,
            summary.successful_cycles,
            summary.records_collected,
        )
        return summary


def build_driver(http: httpx.AsyncClient, store: PartitionedStore, cfg) -> CollectionDriver:
    """Wire feed, title cache and store into one collection driver."""
    feed = FeedClient(
        http,
        vehicle_locations_url=cfg.vehicle_locations_url,
        route_list_url=cfg.route_list_url,
        timeout=cfg.http_timeout,
    )
    titles = RouteTitleCache(
        fetch=feed.fetch_route_titles,
        persist=store.save_routes,
        ttl_ms=cfg.route_titles_ttl * 1000,
    )
    titles.seed(store.load_routes())
    return CollectionDriver(feed, store, titles)
