"""Wire formats for persisted partitions.

Speed records are high-volume and homogeneous, so they are stored as a
msgpack array of positional 4-element arrays. The route lookup is small and
meant to be read by people, so it stays JSON.
"""

import json
from typing import Iterable

import msgpack

from ttc_speed_cache.models import RoutesLookup, SpeedRecord


class RecordDecodeError(ValueError):
    """Partition bytes are truncated, corrupt, or not a record array."""


def encode(records: Iterable[SpeedRecord]) -> bytes:
    return msgpack.packb([list(r) for r in records], use_bin_type=True)


def _to_record(item, index: int) -> SpeedRecord:
    if not isinstance(item, list) or len(item) != 4:
        raise RecordDecodeError(f"Record {index} is not a 4-element array: {item!r}")
    timestamp_ms, route_tag, speed_kmh, vehicle_count = item
    if (
        not isinstance(timestamp_ms, int)
        or isinstance(timestamp_ms, bool)
        or not isinstance(route_tag, str)
        or not isinstance(speed_kmh, (int, float))
        or isinstance(speed_kmh, bool)
        or not isinstance(vehicle_count, int)
        or isinstance(vehicle_count, bool)
    ):
        raise RecordDecodeError(f"Record {index} has unexpected field types: {item!r}")
    return SpeedRecord(timestamp_ms, route_tag, float(speed_kmh), vehicle_count)


def decode(data: bytes) -> list[SpeedRecord]:
    """Decode a partition. Corrupt input raises, it never decodes to ``[]``."""
    try:
        items = msgpack.unpackb(data, raw=False)
    except (ValueError, TypeError, msgpack.UnpackException) as e:
        raise RecordDecodeError(f"Could not unpack record array: {e}") from e
    if not isinstance(items, list):
        raise RecordDecodeError(f"Expected a record array, got {type(items).__name__}")
    return [_to_record(item, i) for i, item in enumerate(items)]


def encode_routes(routes: RoutesLookup) -> bytes:
    return json.dumps(routes, indent=2, sort_keys=True, ensure_ascii=False).encode("utf-8")


def decode_routes(data: bytes) -> RoutesLookup:
    routes = json.loads(data)
    if not isinstance(routes, dict):
        raise ValueError("Route lookup must be a JSON object")
    return {str(tag): str(title) for tag, title in routes.items()}
