"""Dev CLI for ttc-speed-cache."""

import os
import subprocess
import sys
from datetime import datetime, timezone

import httpx

COMMANDS = {
    "dev": "Run uvicorn in development mode with auto-reload",
    "start": "Run uvicorn in production mode",
    "collect": "Collect into local daily files: collect [days]",
    "stats": "Print statistics for a local partition: stats [YYYY-MM-DD]",
    "verify": "List stored partitions and trigger the deployed endpoint once",
}

APP = "ttc_speed_cache.main:app"


def dev():
    subprocess.run(
        [
            sys.executable,
            "-m",
            "uvicorn",
            APP,
            "--reload",
            "--host",
            "0.0.0.0",
            "--port",
            "8000",
        ],
        env={**os.environ, "STORAGE_BACKEND": "local"},
    )


def start():
    subprocess.run(
        [
            sys.executable,
            "-m",
            "uvicorn",
            APP,
            "--host",
            "0.0.0.0",
            "--port",
            "8000",
        ],
    )


def collect():
    from ttc_speed_cache.cache_speeds import main as cache_speeds

    cache_speeds(sys.argv[2:])


def stats():
    from ttc_speed_cache.cache_speeds import print_stats
    from ttc_speed_cache.config import settings
    from ttc_speed_cache.store import LocalStore

    store = LocalStore(settings.cache_dir)
    if len(sys.argv) > 2:
        date_key = sys.argv[2]
    else:
        date_key = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    print_stats(store, date_key)


def _check_storage():
    from ttc_speed_cache.config import settings
    from ttc_speed_cache.store import build_store

    print(f"Checking {settings.storage_backend} storage...")
    try:
        store = build_store(settings)
        speed_files = store.list_partitions()
        route_count = len(store.load_routes())
    except Exception as e:
        print(f"  Error checking storage: {e}")
        return

    print(f"  Found {len(speed_files)} speed data file(s)")
    for name in speed_files[-5:]:
        print(f"    - {name}")
    print(f"  Route lookup has {route_count} route(s)")
    if not speed_files:
        print("  No files found yet - wait a few minutes for the first collection")


def _check_endpoint():
    from ttc_speed_cache.config import settings

    url = settings.collect_endpoint_url
    if not url:
        print("COLLECT_ENDPOINT_URL not set, skipping endpoint check")
        return

    print(f"Testing endpoint {url}...")
    headers = {}
    if settings.cron_secret:
        headers["Authorization"] = f"Bearer {settings.cron_secret}"
    try:
        resp = httpx.post(url, headers=headers, timeout=30)
    except httpx.HTTPError as e:
        print(f"  Error testing endpoint: {e}")
        return

    if resp.status_code != 200:
        print(f"  Endpoint returned: {resp.status_code}")
        print(f"  Response: {resp.text}")
        return
    data = resp.json()
    print(f"  Endpoint responding: {resp.status_code}")
    print(f"    - Success: {data.get('success')}")
    print(f"    - Records collected: {data.get('recordsCollected')}")
    print(f"    - Execution time: {data.get('executionTimeMs')}ms")
    if data.get("speedsLocation"):
        print(f"    - Speeds written: {data['speedsLocation']}")
    if data.get("routesLocation"):
        print(f"    - Routes written: {data['routesLocation']}")


def verify():
    _check_storage()
    print()
    _check_endpoint()


def usage():
    print("Usage: uv run cli.py <command>\n")
    print("Commands:")
    for name, desc in COMMANDS.items():
        print(f"  {name:14s} {desc}")
    sys.exit(1)


def main():
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        usage()

    cmd = sys.argv[1]
    dispatch = {
        "dev": dev,
        "start": start,
        "collect": collect,
        "stats": stats,
        "verify": verify,
    }
    dispatch[cmd]()


if __name__ == "__main__":
    main()
