"""Versioned key/value storage for belief systems, dialectics and self models.

Values are `StoredRecord` pydantic models. Each (scope, key) keeps every stored
version sorted ascending; storing an existing version replaces it. Writers either
hold `lock(scope, key)` across their read-modify-write or pass `expected_version`
so that a store on top of a stale read is rejected.
"""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import NamedTuple

from epistemic_core import db
from epistemic_core.errors import NotFoundError, StaleVersionError, ValidationError
from epistemic_core.models import BeliefSystem, Dialectic, Philosophy, SelfModel, StoredRecord

logger = logging.getLogger(__name__)

RECORD_TYPES: dict[str, type[StoredRecord]] = {
    cls.record_type: cls for cls in (BeliefSystem, Dialectic, SelfModel, Philosophy)
}


class Write(NamedTuple):
    scope_id: str
    key: str
    value: StoredRecord
    version: int
    # Latest version the caller read; 0 means "the key must not exist yet".
    expected_version: int | None = None


def _encode(value: StoredRecord) -> tuple[str, str]:
    if not isinstance(value, StoredRecord) or value.record_type not in RECORD_TYPES:
        raise ValidationError(f"cannot store value of type {type(value).__name__}")
    return value.record_type, value.model_dump_json()


def _decode(record_type: str, data: str) -> StoredRecord:
    cls = RECORD_TYPES.get(record_type)
    if cls is None:
        raise ValidationError(f"unknown record type {record_type!r}")
    return cls.model_validate_json(data)


class KeyValueStore(ABC):
    def __init__(self):
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    @asynccontextmanager
    async def lock(self, scope_id: str, key: str):
        """Hold the per-key mutex for a whole retrieve-mutate-store sequence."""
        lock = self._locks.setdefault((scope_id, key), asyncio.Lock())
        async with lock:
            yield

    async def store(
        self,
        scope_id: str,
        key: str,
        value: StoredRecord,
        version: int,
        expected_version: int | None = None,
    ):
        await self.store_many([Write(scope_id, key, value, version, expected_version)])

    async def retrieve_latest(self, scope_id: str, key: str) -> StoredRecord:
        value, _ = await self.retrieve_latest_versioned(scope_id, key)
        return value

    @abstractmethod
    async def store_many(self, writes: list[Write]):
        """Commit all writes or none of them."""

    @abstractmethod
    async def retrieve_latest_versioned(self, scope_id: str, key: str) -> tuple[StoredRecord, int]:
        ...

    @abstractmethod
    async def retrieve_all_versions(self, scope_id: str, key: str) -> list[StoredRecord]:
        ...

    @abstractmethod
    async def list_by_type(self, scope_id: str, record_cls: type[StoredRecord]) -> list[StoredRecord]:
        """Latest version of every key in scope whose latest value is a `record_cls`."""


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store, optionally mirrored to a JSON file after every write."""

    def __init__(self, file_path: str = ""):
        super().__init__()
        # scope -> key -> [(version, record_type, json)]
        self._data: dict[str, dict[str, list[tuple[int, str, str]]]] = {}
        self.file_path = file_path
        if file_path and os.path.exists(file_path):
            self._load()

    def _load(self):
        with open(self.file_path) as f:
            raw = json.load(f)
        self._data = {
            scope: {key: [tuple(v) for v in versions] for key, versions in keys.items()}
            for scope, keys in raw.items()
        }

    def _save(self):
        if not self.file_path:
            return
        with open(self.file_path, "w") as f:
            json.dump(self._data, f)

    def _latest_version(self, scope_id: str, key: str) -> int:
        versions = self._data.get(scope_id, {}).get(key)
        return versions[-1][0] if versions else 0

    async def store_many(self, writes: list[Write]):
        encoded = []
        for w in writes:
            if w.expected_version is not None:
                latest = self._latest_version(w.scope_id, w.key)
                if latest != w.expected_version:
                    raise StaleVersionError(
                        f"{w.scope_id}/{w.key}: expected version {w.expected_version}, latest is {latest}"
                    )
            encoded.append((w, *_encode(w.value)))

        # No awaits past this point: the batch lands as a unit.
        for w, record_type, data in encoded:
            versions = self._data.setdefault(w.scope_id, {}).setdefault(w.key, [])
            versions[:] = [v for v in versions if v[0] != w.version]
            versions.append((w.version, record_type, data))
            versions.sort(key=lambda v: v[0])
            logger.debug("stored %s %s/%s v%d", record_type, w.scope_id, w.key, w.version)
        self._save()

    def _versions(self, scope_id: str, key: str) -> list[tuple[int, str, str]]:
        scope = self._data.get(scope_id)
        if scope is None:
            raise NotFoundError(f"scope {scope_id!r} not found")
        versions = scope.get(key)
        if not versions:
            raise NotFoundError(f"key {key!r} not found in scope {scope_id!r}")
        return versions

    async def retrieve_latest_versioned(self, scope_id: str, key: str) -> tuple[StoredRecord, int]:
        version, record_type, data = self._versions(scope_id, key)[-1]
        return _decode(record_type, data), version

    async def retrieve_all_versions(self, scope_id: str, key: str) -> list[StoredRecord]:
        return [_decode(record_type, data) for _, record_type, data in self._versions(scope_id, key)]

    async def list_by_type(self, scope_id: str, record_cls: type[StoredRecord]) -> list[StoredRecord]:
        result = []
        for versions in self._data.get(scope_id, {}).values():
            if versions and versions[-1][1] == record_cls.record_type:
                result.append(_decode(versions[-1][1], versions[-1][2]))
        return result

    def clear(self):
        self._data = {}
        self._save()


class PostgresKeyValueStore(KeyValueStore):
    """Store on the shared asyncpg pool. `store_many` runs in one transaction."""

    async def store_many(self, writes: list[Write]):
        encoded = [(w, *_encode(w.value)) for w in writes]
        pool = await db.get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                for w, record_type, data in encoded:
                    # Serializes concurrent writers of the same key until commit.
                    await conn.execute(
                        "SELECT pg_advisory_xact_lock(hashtext($1 || '/' || $2))",
                        w.scope_id, w.key,
                    )
                    if w.expected_version is not None:
                        latest = await conn.fetchval(
                            "SELECT COALESCE(MAX(version), 0) FROM kv_records WHERE scope_id = $1 AND key = $2",
                            w.scope_id, w.key,
                        )
                        if latest != w.expected_version:
                            raise StaleVersionError(
                                f"{w.scope_id}/{w.key}: expected version {w.expected_version}, latest is {latest}"
                            )
                    await conn.execute(
                        """
                        INSERT INTO kv_records (scope_id, key, version, record_type, data)
                        VALUES ($1, $2, $3, $4, $5::jsonb)
                        ON CONFLICT (scope_id, key, version)
                        DO UPDATE SET record_type = $4, data = $5::jsonb, stored_at = now()
                        """,
                        w.scope_id, w.key, w.version, record_type, data,
                    )
                    logger.debug("stored %s %s/%s v%d", record_type, w.scope_id, w.key, w.version)

    async def retrieve_latest_versioned(self, scope_id: str, key: str) -> tuple[StoredRecord, int]:
        row = await db.fetchrow(
            """
            SELECT version, record_type, data::text AS data FROM kv_records
            WHERE scope_id = $1 AND key = $2
            ORDER BY version DESC
            LIMIT 1
            """,
            scope_id, key,
        )
        if row is None:
            raise NotFoundError(f"key {key!r} not found in scope {scope_id!r}")
        return _decode(row["record_type"], row["data"]), row["version"]

    async def retrieve_all_versions(self, scope_id: str, key: str) -> list[StoredRecord]:
        rows = await db.fetch(
            """
            SELECT record_type, data::text AS data FROM kv_records
            WHERE scope_id = $1 AND key = $2
            ORDER BY version ASC
            """,
            scope_id, key,
        )
        if not rows:
            raise NotFoundError(f"key {key!r} not found in scope {scope_id!r}")
        return [_decode(r["record_type"], r["data"]) for r in rows]

    async def list_by_type(self, scope_id: str, record_cls: type[StoredRecord]) -> list[StoredRecord]:
        rows = await db.fetch(
            """
            SELECT DISTINCT ON (key) key, record_type, data::text AS data FROM kv_records
            WHERE scope_id = $1
            ORDER BY key, version DESC
            """,
            scope_id,
        )
        return [_decode(r["record_type"], r["data"]) for r in rows if r["record_type"] == record_cls.record_type]
