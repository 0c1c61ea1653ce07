"""Per-invocation record of URLs that were already rewritten or skipped."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from .classifier import normalize_path
from .utils import cache_key


class CacheState(str, Enum):
    REPLACED = "replaced"
    SKIPPED = "skipped"


class ReplacementCache:
    """Remembers the outcome for each normalized URL during one document pass.

    A fresh instance is created for every response; nothing is shared between
    requests.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, CacheState] = {}

    @staticmethod
    def key(url: str) -> str:
        return cache_key(normalize_path(url))

    def state(self, url: str) -> Optional[CacheState]:
        return self._entries.get(self.key(url))

    def mark_replaced(self, url: str) -> None:
        self._entries[self.key(url)] = CacheState.REPLACED

    def mark_skipped(self, url: str) -> None:
        # A URL that was rewritten once stays rewritten.
        self._entries.setdefault(self.key(url), CacheState.SKIPPED)

    def is_processed(self, url: str) -> bool:
        return self.key(url) in self._entries

    def __contains__(self, url: object) -> bool:
        return isinstance(url, str) and self.is_processed(url)

    def __len__(self) -> int:
        return len(self._entries)
