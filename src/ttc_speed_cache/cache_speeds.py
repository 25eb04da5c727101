"""
Standalone collector: samples the feed every minute into daily local files.

Usage:
    cache-speeds [days]

Runs until ``days`` (default 30) have elapsed or Ctrl+C, then prints
statistics for today's partition.
"""

import argparse
import asyncio
import logging
import signal

import httpx

from ttc_speed_cache.aggregate import summarize
from ttc_speed_cache.codec import RecordDecodeError
from ttc_speed_cache.collector import build_driver
from ttc_speed_cache.config import settings
from ttc_speed_cache.store import LocalStore
from ttc_speed_cache.timeutil import now_ms, utc_from_ms

logger = logging.getLogger(__name__)


def positive_days(value: str) -> int:
    try:
        days = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid duration: {value!r} (expected whole days)")
    if days <= 0:
        raise argparse.ArgumentTypeError(f"invalid duration: {days} (must be positive)")
    return days


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cache-speeds",
        description="Cache TTC per-route average speeds every minute.",
    )
    parser.add_argument(
        "days",
        nargs="?",
        type=positive_days,
        default=settings.default_duration_days,
        help=f"how many days to collect for (default {settings.default_duration_days})",
    )
    return parser.parse_args(argv)


def _kb(path) -> float:
    return path.stat().st_size / 1024 if path.exists() else 0.0


def print_stats(store: LocalStore, partition_key: str):
    """Print statistics for one local partition."""
    try:
        records = store.load(partition_key)
    except RecordDecodeError as e:
        print(f"Partition {partition_key} is unreadable: {e}")
        return
    if not records:
        print("No data collected yet")
        return

    stats = summarize(records)
    hours = stats.duration_hours
    speeds_path = store.partition_path(partition_key)
    print("\n=== Cache Statistics ===")
    print(f"Collection date: {utc_from_ms(stats.first_timestamp_ms):%Y-%m-%d}")
    print(f"Duration: {hours:.2f} hours ({hours / 24:.2f} days)")
    print(f"Total records: {stats.total_records}")
    print(f"Unique routes: {stats.unique_routes}")
    print(f"Cache file: {speeds_path}")
    print(f"Cache file size: {_kb(speeds_path):.2f} KB")
    print(f"Routes file: {store.routes_path}")
    print(f"Routes file size: {_kb(store.routes_path):.2f} KB")
    print("========================\n")


async def collect(days: int, store: LocalStore) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_stop():
        print("\n\nStopping data collection...")
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop)
        except NotImplementedError:
            pass  # Windows: Ctrl+C raises KeyboardInterrupt instead

    async with httpx.AsyncClient() as http:
        driver = build_driver(http, store, settings)
        await driver.run(days, stop, interval_s=settings.collect_interval)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s — %(message)s",
    )

    store = LocalStore(settings.cache_dir)
    print("=================================================")
    print("TTC Speed Data Caching Script")
    print("=================================================")
    print(f"Collection interval: {settings.collect_interval} seconds")
    print(f"Target duration: {args.days} days")
    print(f"Cache directory: {store.cache_dir}")
    print("=================================================\n")
    print("Press Ctrl+C to stop collection\n")

    print_stats(store, store.partition_key_for(now_ms()))
    try:
        asyncio.run(collect(args.days, store))
    except KeyboardInterrupt:
        print("\n\nStopping data collection...")
    print_stats(store, store.partition_key_for(now_ms()))


if __name__ == "__main__":
    main()
