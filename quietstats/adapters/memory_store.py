"""In-memory key-value store adapter.

Implements KeyValueStorePort for tests and single-process deployments.
Each put/get is atomic under a lock; read-modify-write sequences are not.
"""

from __future__ import annotations

import copy
import threading

from quietstats.core.ports.storage import Item


class InMemoryKeyValueStore:
    """Dict-backed partition/sort-key store with one secondary index."""

    def __init__(self) -> None:
        self._partitions: dict[str, dict[str, Item]] = {}
        self._lock = threading.Lock()

    def put_item(self, item: Item) -> None:
        pk, sk = item["pk"], item["sk"]
        with self._lock:
            self._partitions.setdefault(pk, {})[sk] = copy.deepcopy(item)

    def get_item(self, pk: str, sk: str) -> Item | None:
        with self._lock:
            item = self._partitions.get(pk, {}).get(sk)
            return copy.deepcopy(item) if item is not None else None

    def delete_item(self, pk: str, sk: str) -> None:
        with self._lock:
            self._partitions.get(pk, {}).pop(sk, None)

    def query(
        self,
        pk: str,
        sk_prefix: str | None = None,
        sk_between: tuple[str, str] | None = None,
        limit: int | None = None,
    ) -> list[Item]:
        with self._lock:
            partition = self._partitions.get(pk, {})
            results = []
            for sk in sorted(partition):
                if sk_prefix is not None and not sk.startswith(sk_prefix):
                    continue
                if sk_between is not None and not (sk_between[0] <= sk <= sk_between[1]):
                    continue
                results.append(copy.deepcopy(partition[sk]))
                if limit is not None and len(results) >= limit:
                    break
            return results

    def query_index(self, gsi1pk: str, sk_prefix: str | None = None) -> list[Item]:
        with self._lock:
            matches = [
                copy.deepcopy(item)
                for partition in self._partitions.values()
                for item in partition.values()
                if item.get("gsi1pk") == gsi1pk
                and (sk_prefix is None or str(item.get("gsi1sk", "")).startswith(sk_prefix))
            ]
        return sorted(matches, key=lambda i: str(i.get("gsi1sk", "")))

    def clear(self) -> None:
        """Clear all items - useful for testing."""
        with self._lock:
            self._partitions.clear()
