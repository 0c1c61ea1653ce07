"""Data models used throughout the rewriting pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional


class AssetKind(str, Enum):
    """Top-level public directory an asset is served from."""

    STATIC = "static"
    MEDIA = "media"

    @property
    def prefix(self) -> str:
        return f"/{self.value}/"


@dataclass(frozen=True)
class AssetReference:
    """A local asset URL found in a document, normalized for CDN mapping."""

    raw_url: str
    normalized_path: str
    kind: AssetKind
    extension: str

    @property
    def cdn_path(self) -> str:
        """Path relative to the CDN root (the static/media prefix removed)."""
        return self.normalized_path[len(self.kind.prefix):]


@dataclass(frozen=True)
class CdnTarget:
    """CDN origin that asset URLs are redirected to."""

    base_url: str = ""

    def __bool__(self) -> bool:
        return bool(self.base_url)

    def url_for(self, reference: AssetReference) -> str:
        return self.base_url.rstrip("/") + "/" + reference.cdn_path.lstrip("/")


@dataclass
class Classification:
    """Outcome of checking a single URL against the CDN eligibility rules."""

    eligible: bool
    reference: Optional[AssetReference]
    reason: str = ""


@dataclass
class RewriteStats:
    """Counters accumulated while rewriting one document."""

    replacement_count: int = 0
    replaced_urls: Dict[str, str] = field(default_factory=dict)
    failed_urls: List[str] = field(default_factory=list)


@dataclass
class MergedAsset:
    """Concatenated CSS/JS bundle stored under a content-derived name."""

    url: str
    path: Path
    sources: List[str]
    cache_hit: bool


@dataclass
class ConversionResult:
    """Size statistics for a raster image converted to WebP."""

    source: Path
    destination: Path
    original_bytes: int
    webp_bytes: int

    @property
    def savings_percent(self) -> float:
        if self.original_bytes <= 0:
            return 0.0
        return round(
            (self.original_bytes - self.webp_bytes) / self.original_bytes * 100, 2
        )


@dataclass
class PageCacheSettings:
    """Full-page-cache values the host framework should apply."""

    caching_application: int
    ttl: int
