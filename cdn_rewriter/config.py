"""Configuration objects and constants for CDN rewriting."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, FrozenSet, List, Mapping, Optional, Tuple

from .classifier import CRITICAL_FILES, SAFE_EXTENSIONS
from .models import CdnTarget, PageCacheSettings

CDN_HOST = "cdn.jsdelivr.net"
CDN_URL_TEMPLATE = "https://" + CDN_HOST + "/gh/{username}/{repository}@{branch}/"
DEFAULT_BRANCH = "main"
DEFAULT_FILE_TYPES = ["css", "js"]
MIN_PAGE_CACHE_TTL = 3600
CACHE_APPLICATION_BUILT_IN = 1
CACHE_APPLICATION_VARNISH = 2

XML_PATH_ENABLED = "cdn/general/enabled"
XML_PATH_DEBUG_MODE = "cdn/general/debug_mode"
XML_PATH_GITHUB_USERNAME = "cdn/github/username"
XML_PATH_GITHUB_REPOSITORY = "cdn/github/repository"
XML_PATH_GITHUB_BRANCH = "cdn/github/branch"
XML_PATH_GITHUB_TOKEN = "cdn/github/token"
XML_PATH_FILE_TYPES = "cdn/settings/file_types"
XML_PATH_EXCLUDED_PATHS = "cdn/settings/excluded_paths"
XML_PATH_CUSTOM_URLS = "cdn/custom_urls/url_list"
XML_PATH_PERFORMANCE = "cdn/performance/"
XML_PATH_UNSECURE_BASE_URL = "web/unsecure/base_url"
XML_PATH_SECURE_BASE_URL = "web/secure/base_url"

PERFORMANCE_FLAGS = (
    "lazy_load_images",
    "convert_to_webp",
    "probe_image_dimensions",
    "optimize_images",
    "optimize_javascript",
    "optimize_critical_path",
    "use_progressive_loading",
    "enhance_full_page_cache",
    "use_varnish",
)

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_LINE_SPLIT = re.compile(r"\r\n|\r|\n")


def _as_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_int(value: Any) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


def _split_lines(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        lines = [str(item) for item in value]
    else:
        lines = _LINE_SPLIT.split(str(value))
    return [line.strip() for line in lines if line.strip()]


def _split_csv(value: Any) -> List[str]:
    if not value:
        return list(DEFAULT_FILE_TYPES)
    if isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        items = str(value).split(",")
    types = [item.strip().lower().lstrip(".") for item in items if item.strip()]
    return types or list(DEFAULT_FILE_TYPES)


@dataclass
class CdnConfig:
    """Settings that control URL rewriting and the performance transforms."""

    enabled: bool = False
    debug_mode: bool = False
    github_username: str = ""
    github_repository: str = ""
    github_branch: str = DEFAULT_BRANCH
    github_token: str = field(default="", repr=False)
    file_types: List[str] = field(default_factory=lambda: list(DEFAULT_FILE_TYPES))
    excluded_paths: List[str] = field(default_factory=list)
    custom_urls: List[str] = field(default_factory=list)
    performance_enabled: bool = False
    lazy_load_images: bool = False
    convert_to_webp: bool = False
    probe_image_dimensions: bool = False
    optimize_images: bool = False
    optimize_javascript: bool = False
    optimize_critical_path: bool = False
    use_progressive_loading: bool = False
    enhance_full_page_cache: bool = False
    use_varnish: bool = False
    page_cache_ttl: int = MIN_PAGE_CACHE_TTL
    base_url: str = ""
    secure_base_url: str = ""

    def __post_init__(self) -> None:
        self.github_username = _as_text(self.github_username)
        self.github_repository = _as_text(self.github_repository)
        self.github_branch = _as_text(self.github_branch) or DEFAULT_BRANCH
        self.base_url = _as_text(self.base_url).rstrip("/")
        self.secure_base_url = _as_text(self.secure_base_url).rstrip("/")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "CdnConfig":
        """Build a config from a flat scope-config mapping keyed by config path."""
        flags = {
            name: _as_flag(values.get(XML_PATH_PERFORMANCE + name))
            for name in PERFORMANCE_FLAGS
        }
        return cls(
            enabled=_as_flag(values.get(XML_PATH_ENABLED)),
            debug_mode=_as_flag(values.get(XML_PATH_DEBUG_MODE)),
            github_username=_as_text(values.get(XML_PATH_GITHUB_USERNAME)),
            github_repository=_as_text(values.get(XML_PATH_GITHUB_REPOSITORY)),
            github_branch=_as_text(values.get(XML_PATH_GITHUB_BRANCH)),
            github_token=_as_text(values.get(XML_PATH_GITHUB_TOKEN)),
            file_types=_split_csv(values.get(XML_PATH_FILE_TYPES)),
            excluded_paths=_split_lines(values.get(XML_PATH_EXCLUDED_PATHS)),
            custom_urls=_split_lines(values.get(XML_PATH_CUSTOM_URLS)),
            performance_enabled=_as_flag(values.get(XML_PATH_PERFORMANCE + "enabled")),
            page_cache_ttl=_as_int(values.get(XML_PATH_PERFORMANCE + "page_cache_ttl")),
            base_url=_as_text(values.get(XML_PATH_UNSECURE_BASE_URL)),
            secure_base_url=_as_text(values.get(XML_PATH_SECURE_BASE_URL)),
            **flags,
        )

    def cdn_base_url(self) -> str:
        """Return the CDN root URL, or an empty string when the identity is incomplete."""
        if not (self.github_username and self.github_repository and self.github_branch):
            return ""
        return CDN_URL_TEMPLATE.format(
            username=self.github_username,
            repository=self.github_repository,
            branch=self.github_branch,
        )

    def cdn_target(self) -> CdnTarget:
        return CdnTarget(self.cdn_base_url())

    def safe_extensions(self) -> FrozenSet[str]:
        return SAFE_EXTENSIONS | frozenset(self.file_types)

    def excluded_substrings(self) -> Tuple[str, ...]:
        return tuple(CRITICAL_FILES) + tuple(self.excluded_paths)

    @property
    def performance_active(self) -> bool:
        return self.enabled and self.performance_enabled

    def _performance_flag(self, value: bool) -> bool:
        return self.performance_active and value

    @property
    def lazy_loading_enabled(self) -> bool:
        return self._performance_flag(self.lazy_load_images)

    @property
    def webp_enabled(self) -> bool:
        return self._performance_flag(self.convert_to_webp)

    @property
    def dimension_probe_enabled(self) -> bool:
        return self.webp_enabled and self.probe_image_dimensions

    @property
    def image_optimization_enabled(self) -> bool:
        return self._performance_flag(self.optimize_images)

    @property
    def js_optimization_enabled(self) -> bool:
        return self._performance_flag(self.optimize_javascript)

    @property
    def critical_path_enabled(self) -> bool:
        return self._performance_flag(self.optimize_critical_path)

    @property
    def progressive_loading_enabled(self) -> bool:
        return self._performance_flag(self.use_progressive_loading)

    @property
    def full_page_cache_enabled(self) -> bool:
        return self._performance_flag(self.enhance_full_page_cache)

    @property
    def varnish_enabled(self) -> bool:
        return self.full_page_cache_enabled and self.use_varnish

    def effective_page_cache_ttl(self) -> int:
        """TTL in seconds, never lower than one hour."""
        return max(self.page_cache_ttl, MIN_PAGE_CACHE_TTL)

    def page_cache_settings(self) -> Optional[PageCacheSettings]:
        """Full-page-cache values for the host application to write into its own config.

        Nothing in this package applies them; ``None`` means leave the host's cache alone.
        """
        if not self.full_page_cache_enabled:
            return None
        application = (
            CACHE_APPLICATION_VARNISH if self.varnish_enabled else CACHE_APPLICATION_BUILT_IN
        )
        return PageCacheSettings(
            caching_application=application,
            ttl=self.effective_page_cache_ttl(),
        )
