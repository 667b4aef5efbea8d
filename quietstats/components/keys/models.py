"""
Storage key encoder models.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# --- Enums ---


class EntityKind(str, Enum):
    """Sort-key prefixes, one per stored entity type."""

    SITE = "SITE"
    PAGE_VIEW = "PV"
    SESSION = "SESSION"
    EVENT = "EVENT"
    GOAL = "GOAL"
    CONVERSION = "CONVERSION"
    STATS = "STATS"
    REALTIME = "REALTIME"


# --- Key Models ---


@dataclass(frozen=True)
class KeyPair:
    """Partition/sort key pair plus the optional secondary-index pair."""

    pk: str
    sk: str
    gsi1pk: str | None = None
    gsi1sk: str | None = None


@dataclass(frozen=True)
class KeyRange:
    """Inclusive sort-key range inside one partition."""

    pk: str
    sk_low: str
    sk_high: str


@dataclass(frozen=True)
class DecodedKey:
    """A sort key split back into its entity kind and components."""

    kind: EntityKind
    parts: tuple[str, ...]
