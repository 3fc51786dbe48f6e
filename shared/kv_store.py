"""Key-value storage backends for conversation history and content.

The store is modelled as tables of rows, each row holding columns whose
cells are versioned by timestamp:

- ``get(table, key)`` returns the whole row (all versions of all columns),
  or None when the row does not exist.
- ``put(table, key, column, value, timestamp)`` adds a version; a write with
  an existing timestamp replaces that version.
- ``delete_row(table, key)`` drops the row stored under exactly ``key``.
- ``delete_range(table, key_prefix)`` drops every row whose key starts with
  the prefix.
- ``scan_all_keys(table)`` lists the row keys of a table.

Single-valued reads use ``Row.latest(column)`` (latest timestamp wins);
history reads use ``Row.versions(column)`` (ascending timestamps).

Two backends are provided: Redis (``redis.asyncio``) for deployments and an
in-process dict for local dev/tests. ``build_kv_store`` picks Redis when a
``REDIS_URL`` is configured.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

from redis import asyncio as aioredis

from shared.settings import Settings


@dataclass(frozen=True)
class Cell:
    timestamp: int
    value: str


@dataclass
class Row:
    key: str
    cells: Dict[str, List[Cell]] = field(default_factory=dict)

    def versions(self, column: str) -> List[Cell]:
        return sorted(self.cells.get(column, []), key=lambda c: c.timestamp)

    def latest(self, column: str) -> Optional[str]:
        cells = self.cells.get(column, [])
        if not cells:
            return None
        return max(cells, key=lambda c: c.timestamp).value


class KeyValueStore(Protocol):
    async def get(self, table: str, key: str) -> Optional[Row]: ...

    async def put(
        self, table: str, key: str, column: str, value: str, timestamp: int
    ) -> None: ...

    async def delete_row(self, table: str, key: str) -> int: ...

    async def delete_range(self, table: str, key_prefix: str) -> int: ...

    async def scan_all_keys(self, table: str) -> List[str]: ...

    async def close(self) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store: table -> key -> column -> cells."""

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Dict[str, List[Cell]]]] = {}

    async def get(self, table: str, key: str) -> Optional[Row]:
        columns = self._tables.get(table, {}).get(key)
        if not columns:
            return None
        return Row(key=key, cells={c: list(cells) for c, cells in columns.items()})

    async def put(
        self, table: str, key: str, column: str, value: str, timestamp: int
    ) -> None:
        cells = self._tables.setdefault(table, {}).setdefault(key, {}).setdefault(
            column, []
        )
        cells[:] = [c for c in cells if c.timestamp != timestamp]
        cells.append(Cell(timestamp=timestamp, value=value))

    async def delete_row(self, table: str, key: str) -> int:
        return 0 if self._tables.get(table, {}).pop(key, None) is None else 1

    async def delete_range(self, table: str, key_prefix: str) -> int:
        rows = self._tables.get(table, {})
        doomed = [k for k in rows if k.startswith(key_prefix)]
        for key in doomed:
            del rows[key]
        return len(doomed)

    async def scan_all_keys(self, table: str) -> List[str]:
        return sorted(self._tables.get(table, {}))

    async def close(self) -> None:
        return None


class RedisKeyValueStore:
    """Redis layout.

    - ``kv:{table}:keys``: set of row keys
    - ``kv:{table}:columns``: set of column names used in the table
    - ``kv:{table}:cell:{column}:{key}``: sorted set of JSON ``[ts, value]``
      members scored by timestamp
    """

    def __init__(self, url: str) -> None:
        self._client = aioredis.from_url(url, decode_responses=True)

    @staticmethod
    def _keys_key(table: str) -> str:
        return f"kv:{table}:keys"

    @staticmethod
    def _columns_key(table: str) -> str:
        return f"kv:{table}:columns"

    @staticmethod
    def _cell_key(table: str, column: str, key: str) -> str:
        return f"kv:{table}:cell:{column}:{key}"

    async def get(self, table: str, key: str) -> Optional[Row]:
        columns = await self._client.smembers(self._columns_key(table))
        row = Row(key=key)
        for column in sorted(columns):
            members = await self._client.zrange(
                self._cell_key(table, column, key), 0, -1
            )
            cells = []
            for member in members:
                timestamp, value = json.loads(member)
                cells.append(Cell(timestamp=int(timestamp), value=value))
            if cells:
                row.cells[column] = cells
        return row if row.cells else None

    async def put(
        self, table: str, key: str, column: str, value: str, timestamp: int
    ) -> None:
        cell_key = self._cell_key(table, column, key)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(cell_key, timestamp, timestamp)
            pipe.zadd(cell_key, {json.dumps([timestamp, value]): timestamp})
            pipe.sadd(self._keys_key(table), key)
            pipe.sadd(self._columns_key(table), column)
            await pipe.execute()

    async def delete_row(self, table: str, key: str) -> int:
        if not await self._client.sismember(self._keys_key(table), key):
            return 0
        columns = await self._client.smembers(self._columns_key(table))
        async with self._client.pipeline(transaction=True) as pipe:
            for column in columns:
                pipe.delete(self._cell_key(table, column, key))
            pipe.srem(self._keys_key(table), key)
            await pipe.execute()
        return 1

    async def delete_range(self, table: str, key_prefix: str) -> int:
        keys = [
            k
            for k in await self._client.smembers(self._keys_key(table))
            if k.startswith(key_prefix)
        ]
        if not keys:
            return 0
        columns = await self._client.smembers(self._columns_key(table))
        async with self._client.pipeline(transaction=True) as pipe:
            for key in keys:
                for column in columns:
                    pipe.delete(self._cell_key(table, column, key))
            pipe.srem(self._keys_key(table), *keys)
            await pipe.execute()
        return len(keys)

    async def scan_all_keys(self, table: str) -> List[str]:
        return sorted(await self._client.smembers(self._keys_key(table)))

    async def close(self) -> None:
        await self._client.aclose()


def build_kv_store(settings: Settings) -> KeyValueStore:
    """Return a Redis-backed store when configured, else an in-process one."""
    if settings.redis_url:
        return RedisKeyValueStore(settings.redis_url)
    return InMemoryKeyValueStore()
