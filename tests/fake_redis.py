"""Dict-backed stand-in for a ``redis.Redis(decode_responses=True)`` client.

Covers only the commands the job store issues. Values are stored as strings
the way a decoding client would hand them back.
"""
from __future__ import annotations

from typing import Any, Iterable


def _range(items: list, start: int, end: int) -> list:
    n = len(items)
    if start < 0:
        start = max(n + start, 0)
    if end < 0:
        end = n + end
    if start > end:
        return []
    return items[start:end + 1]


class FakeRedis:
    def __init__(self) -> None:
        self.strings: dict[str, int] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.lists: dict[str, list[str]] = {}

    def ping(self) -> bool:
        return True

    # strings
    def incr(self, key: str) -> int:
        self.strings[key] = self.strings.get(key, 0) + 1
        return self.strings[key]

    # hashes
    def hgetall(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))

    def hset(self, key: str, mapping: dict[str, Any]) -> int:
        h = self.hashes.setdefault(key, {})
        added = sum(1 for f in mapping if f not in h)
        h.update({str(k): str(v) for k, v in mapping.items()})
        return added

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            for store in (self.strings, self.hashes, self.zsets, self.lists):
                if key in store:
                    del store[key]
                    removed += 1
        return removed

    # sorted sets
    def zadd(self, key: str, mapping: dict[str, float]) -> int:
        z = self.zsets.setdefault(key, {})
        added = sum(1 for m in mapping if m not in z)
        z.update({str(m): float(s) for m, s in mapping.items()})
        return added

    def _sorted(self, key: str) -> list[tuple[str, float]]:
        return sorted(self.zsets.get(key, {}).items(), key=lambda kv: (kv[1], kv[0]))

    def zrangebyscore(self, key: str, min_score: float, max_score: float) -> list[str]:
        return [m for m, s in self._sorted(key) if float(min_score) <= s <= float(max_score)]

    def zrange(self, key: str, start: int, end: int) -> list[str]:
        return [m for m, _ in _range(self._sorted(key), start, end)]

    def zrem(self, key: str, *members: str) -> int:
        z = self.zsets.get(key, {})
        removed = 0
        for m in members:
            if m in z:
                del z[m]
                removed += 1
        return removed

    def zpopmin(self, key: str, count: int = 1) -> list[tuple[str, float]]:
        popped = self._sorted(key)[:count]
        for m, _ in popped:
            del self.zsets[key][m]
        return popped

    def zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))

    # lists
    def lpush(self, key: str, *values: str) -> int:
        lst = self.lists.setdefault(key, [])
        for v in values:
            lst.insert(0, str(v))
        return len(lst)

    def lrange(self, key: str, start: int, end: int) -> list[str]:
        return list(_range(self.lists.get(key, []), start, end))

    def ltrim(self, key: str, start: int, end: int) -> bool:
        if key in self.lists:
            self.lists[key] = _range(self.lists[key], start, end)
        return True

    def llen(self, key: str) -> int:
        return len(self.lists.get(key, []))

    def lrem(self, key: str, count: int, value: str) -> int:
        lst = self.lists.get(key, [])
        kept = [v for v in lst if v != value]
        removed = len(lst) - len(kept)
        if key in self.lists:
            self.lists[key] = kept
        return removed

    # test helpers
    def keys_with_prefix(self, prefix: str) -> Iterable[str]:
        for store in (self.strings, self.hashes, self.zsets, self.lists):
            yield from (k for k in store if k.startswith(prefix))
