"""Partitioned persistence for speed records and the route lookup.

A partition is one file (or object) holding a UTC time slice of records.
Daily partitions accumulate every cycle of a day and are rewritten whole;
per-invocation partitions hold exactly one cycle and are written once.
"""

import logging
import os
import tempfile
import uuid
from enum import Enum
from pathlib import Path
from typing import Iterable

from botocore.exceptions import BotoCoreError, ClientError

from ttc_speed_cache.codec import (
    RecordDecodeError,
    decode,
    decode_routes,
    encode,
    encode_routes,
)
from ttc_speed_cache.models import RoutesLookup, SpeedRecord
from ttc_speed_cache.timeutil import now_ms, utc_from_ms

logger = logging.getLogger(__name__)

SPEEDS_PREFIX = "speed-data"
SPEEDS_EXT = "msgpack"
ROUTES_PREFIX = "routes"
ROUTES_EXT = "json"


class Granularity(str, Enum):
    DAILY = "daily"
    PER_INVOCATION = "per_invocation"


def date_key_for(timestamp_ms: int) -> str:
    return utc_from_ms(timestamp_ms).strftime("%Y-%m-%d")


def partition_key_for(timestamp_ms: int, granularity: Granularity) -> str:
    """``YYYY-MM-DD`` for daily partitions, ``YYYY-MM-DD-HHmm`` per invocation."""
    dt = utc_from_ms(timestamp_ms)
    if granularity == Granularity.DAILY:
        return dt.strftime("%Y-%m-%d")
    return dt.strftime("%Y-%m-%d-%H%M")


def speeds_name(partition_key: str) -> str:
    return f"{SPEEDS_PREFIX}-{partition_key}.{SPEEDS_EXT}"


def routes_name(date_key: str | None = None) -> str:
    if date_key is None:
        return f"{ROUTES_PREFIX}.{ROUTES_EXT}"
    return f"{ROUTES_PREFIX}-{date_key}.{ROUTES_EXT}"


class PartitionedStore:
    """Shared load/merge/persist policy; subclasses supply the medium.

    Subclasses implement ``_read`` (bytes, or None when missing), ``_write``
    (returns a location), ``_create`` (write-if-absent), ``_exists`` and
    ``_quarantine``, and list the exceptions their reads raise in
    ``read_errors``.
    """

    granularity: Granularity = Granularity.DAILY
    dated_routes: bool = False
    read_errors: tuple[type[BaseException], ...] = (OSError,)

    def partition_key_for(self, timestamp_ms: int) -> str:
        return partition_key_for(timestamp_ms, self.granularity)

    def location(self, name: str) -> str:
        raise NotImplementedError

    def _read(self, name: str) -> bytes | None:
        raise NotImplementedError

    def _write(self, name: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError

    def _create(self, name: str, data: bytes, content_type: str) -> str | None:
        """Write only if ``name`` is absent; None when it already exists."""
        raise NotImplementedError

    def _exists(self, name: str) -> bool:
        raise NotImplementedError

    def _quarantine(self, name: str) -> str:
        raise NotImplementedError

    def list_partitions(self) -> list[str]:
        raise NotImplementedError

    # ── Speed records ────────────────────────────────────────────────

    def load(self, partition_key: str) -> list[SpeedRecord]:
        """Return a partition's records; missing or unreadable means empty.

        Corrupt contents raise RecordDecodeError.
        """
        name = speeds_name(partition_key)
        try:
            data = self._read(name)
        except self.read_errors:
            logger.exception("Could not read %s, treating as empty", name)
            return []
        if data is None:
            return []
        return decode(data)

    def append(self, partition_key: str, records: Iterable[SpeedRecord]) -> str:
        """Add a batch to a partition and return where it was written."""
        name = speeds_name(partition_key)
        records = list(records)

        if self.granularity == Granularity.PER_INVOCATION:
            return self._write_new(partition_key, encode(records))

        existing: list[SpeedRecord] = []
        data = self._read(name)
        if data is not None:
            try:
                existing = decode(data)
            except RecordDecodeError:
                moved_to = self._quarantine(name)
                logger.error(
                    "Partition %s is corrupt, moved to %s and starting it fresh",
                    name,
                    moved_to,
                )

        return self._write(name, encode(existing + records), "application/octet-stream")

    def _write_new(self, partition_key: str, data: bytes) -> str:
        """Write a per-invocation partition without replacing an existing one.

        A second call in the same minute lands beside the first under a
        suffixed key; both are listed by ``list_partitions``.
        """
        name = speeds_name(partition_key)
        location = self._create(name, data, "application/octet-stream")
        if location is not None:
            return location
        name = speeds_name(f"{partition_key}-{uuid.uuid4().hex[:8]}")
        logger.warning("Partition %s already written this minute, using %s", partition_key, name)
        return self._write(name, data, "application/octet-stream")

    # ── Route lookup ─────────────────────────────────────────────────

    def _routes_name_for(self, as_of_ms: int | None) -> str:
        if not self.dated_routes:
            return routes_name()
        return routes_name(date_key_for(now_ms() if as_of_ms is None else as_of_ms))

    def load_routes(self, as_of_ms: int | None = None) -> RoutesLookup:
        name = self._routes_name_for(as_of_ms)
        try:
            data = self._read(name)
            if data is None:
                return {}
            return decode_routes(data)
        except (ValueError, *self.read_errors):
            logger.warning("Could not load %s, starting without titles", name, exc_info=True)
            return {}

    def save_routes(self, routes: RoutesLookup, as_of_ms: int) -> str:
        """Persist the lookup; new titles overwrite or extend, nothing is deleted.

        A dated document that already exists counts as written.
        """
        name = self._routes_name_for(as_of_ms)
        if self.dated_routes:
            if self._exists(name):
                logger.debug("%s already exists, skipping upload", name)
                return self.location(name)
            merged = dict(routes)
        else:
            merged = self.load_routes(as_of_ms)
            merged.update(routes)
        return self._write(name, encode_routes(merged), "application/json")


class LocalStore(PartitionedStore):
    """Partitions as files under one directory, published by rename."""

    def __init__(self, cache_dir: str | os.PathLike, granularity=Granularity.DAILY):
        self.cache_dir = Path(cache_dir)
        self.granularity = Granularity(granularity)

    def path(self, name: str) -> Path:
        return self.cache_dir / name

    def partition_path(self, partition_key: str) -> Path:
        return self.path(speeds_name(partition_key))

    @property
    def routes_path(self) -> Path:
        return self.path(routes_name())

    def location(self, name: str) -> str:
        return str(self.path(name))

    def _read(self, name: str) -> bytes | None:
        path = self.path(name)
        if not path.exists():
            return None
        return path.read_bytes()

    def _write_temp(self, name: str, data: bytes) -> str:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.cache_dir, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except BaseException:
            os.unlink(tmp)
            raise
        return tmp

    def _write(self, name: str, data: bytes, content_type: str) -> str:
        path = self.path(name)
        tmp = self._write_temp(name, data)
        try:
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        return str(path)

    def _create(self, name: str, data: bytes, content_type: str) -> str | None:
        tmp = self._write_temp(name, data)
        try:
            # link() refuses to replace an existing file.
            os.link(tmp, self.path(name))
        except FileExistsError:
            return None
        finally:
            os.unlink(tmp)
        return self.location(name)

    def _exists(self, name: str) -> bool:
        return self.path(name).exists()

    def _quarantine(self, name: str) -> str:
        target = self.path(f"{name}.corrupt-{now_ms()}")
        os.replace(self.path(name), target)
        return str(target)

    def list_partitions(self) -> list[str]:
        if not self.cache_dir.is_dir():
            return []
        return sorted(p.name for p in self.cache_dir.glob(f"{SPEEDS_PREFIX}-*.{SPEEDS_EXT}"))


_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
# Conditional put lost to an object that exists or is being written.
_TAKEN_CODES = {"PreconditionFailed", "ConditionalRequestConflict"}


class ObjectStore(PartitionedStore):
    """Partitions as immutable S3 objects, one per invocation.

    Every invocation gets its own minute-keyed object, written with a
    conditional put so a second delivery in the same minute is stored
    beside the first rather than over it. Route lookups are dated
    and written at most once per day.
    """

    dated_routes = True
    read_errors = (ClientError, BotoCoreError)

    def __init__(self, s3, bucket: str, prefix: str = "", granularity=Granularity.PER_INVOCATION):
        self.s3 = s3
        self.bucket = bucket
        self.prefix = prefix
        self.granularity = Granularity(granularity)

    def key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def location(self, name: str) -> str:
        return f"s3://{self.bucket}/{self.key(name)}"

    def _read(self, name: str) -> bytes | None:
        try:
            resp = self.s3.get_object(Bucket=self.bucket, Key=self.key(name))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise
        return resp["Body"].read()

    def _write(self, name: str, data: bytes, content_type: str) -> str:
        self.s3.put_object(
            Bucket=self.bucket,
            Key=self.key(name),
            Body=data,
            ContentType=content_type,
        )
        return self.location(name)

    def _create(self, name: str, data: bytes, content_type: str) -> str | None:
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=self.key(name),
                Body=data,
                ContentType=content_type,
                IfNoneMatch="*",
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _TAKEN_CODES:
                return None
            raise
        return self.location(name)

    def _exists(self, name: str) -> bool:
        try:
            self.s3.head_object(Bucket=self.bucket, Key=self.key(name))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return False
            raise
        return True

    def _quarantine(self, name: str) -> str:
        target = f"{name}.corrupt-{now_ms()}"
        self.s3.copy_object(
            Bucket=self.bucket,
            Key=self.key(target),
            CopySource={"Bucket": self.bucket, "Key": self.key(name)},
        )
        return self.location(target)

    def list_partitions(self) -> list[str]:
        paginator = self.s3.get_paginator("list_objects_v2")
        names = []
        for page in paginator.paginate(
            Bucket=self.bucket, Prefix=self.key(f"{SPEEDS_PREFIX}-")
        ):
            for obj in page.get("Contents", []):
                name = obj["Key"][len(self.prefix) :]
                if name.endswith(f".{SPEEDS_EXT}"):
                    names.append(name)
        return sorted(names)


def build_store(settings) -> PartitionedStore:
    """Pick the storage backend named by ``STORAGE_BACKEND``."""
    if settings.storage_backend == "local":
        return LocalStore(settings.cache_dir)
    if settings.storage_backend == "s3":
        if not settings.s3_bucket:
            raise ValueError("S3_BUCKET must be set when STORAGE_BACKEND=s3")
        import boto3

        return ObjectStore(boto3.client("s3"), settings.s3_bucket, settings.s3_prefix)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
