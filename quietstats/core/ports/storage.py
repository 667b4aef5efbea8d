"""
Key-value store port.

A partition-key/sort-key store with one secondary index (GSI1). Items are
plain dicts; "pk" and "sk" are required, "gsi1pk"/"gsi1sk" optional.

Contract:
- put_item is a full-record upsert keyed by (pk, sk)
- query returns items of one partition ordered by sk ascending
- sk_between bounds are inclusive
- Adapter failures surface as StorageError
"""

from __future__ import annotations

from typing import Any, Protocol

Item = dict[str, Any]


class StorageError(Exception):
    """The external store failed or is unavailable. Safe to retry."""


class KeyValueStorePort(Protocol):
    """Partition/sort-key store interface."""

    def put_item(self, item: Item) -> None:
        """Insert or fully replace the item at (item["pk"], item["sk"])."""
        ...

    def get_item(self, pk: str, sk: str) -> Item | None:
        """Fetch one item, or None."""
        ...

    def delete_item(self, pk: str, sk: str) -> None:
        """Remove one item if present."""
        ...

    def query(
        self,
        pk: str,
        sk_prefix: str | None = None,
        sk_between: tuple[str, str] | None = None,
        limit: int | None = None,
    ) -> list[Item]:
        """Items in one partition, filtered by sort-key prefix or inclusive range."""
        ...

    def query_index(self, gsi1pk: str, sk_prefix: str | None = None) -> list[Item]:
        """Items whose secondary-index partition key matches, ordered by gsi1sk."""
        ...
