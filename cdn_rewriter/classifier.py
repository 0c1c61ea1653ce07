"""Decide which local asset URLs may be served from the CDN."""

from __future__ import annotations

import posixpath
import re
from typing import Iterable, Optional
from urllib.parse import urlsplit

from .models import AssetKind, AssetReference, Classification

SAFE_EXTENSIONS = frozenset(
    {"css", "png", "jpg", "jpeg", "gif", "svg", "webp", "js", "woff", "woff2", "ttf", "eot"}
)

# Must load same-origin and synchronously for the storefront to boot.
CRITICAL_FILES = (
    "requirejs/require.js",
    "requirejs-config.js",
    "mage/requirejs/mixins.js",
    "mage/polyfill.js",
    "mage/bootstrap.js",
    "jquery.js",
    "jquery.min.js",
    "jquery-migrate.js",
    "jquery-migrate.min.js",
    "jquery-ui.js",
    "jquery-ui.min.js",
    "require.js",
    "underscore.js",
    "knockout.js",
    "mage/translate.js",
    "mage/common.js",
    "mage/mage.js",
    "Magento_Ui/js/core/app.js",
    "Magento_Customer/js/customer-data.js",
    "Magento_Customer/js/section-config.js",
    "Magento_Checkout/js/sidebar.js",
)

DEFER_CANDIDATES = (
    "js-translation.json",
    "Magento_Ui/js/grid/",
    "Magento_Ui/js/form/",
    "js/theme",
    "Magento_Swatches/js/",
    "Magento_Catalog/js/price-box.js",
    "Magento_Catalog/js/catalog-add-to-cart",
    "Magento_Review/js/",
    "Magento_Theme/js/view/breadcrumbs",
    "Magento_Theme/js/responsive",
    "Magento_Search/js/form-mini",
)

MERGED_CACHE_MARKERS = ("/_cache/merged/", "/_cache/minified/")

_ABSOLUTE_URL = re.compile(r"^(?:[a-z][a-z0-9+.-]*:)?//", re.I)


def normalize_path(url: str) -> str:
    """Strip scheme and host from absolute URLs and ensure a leading slash."""
    url = url.strip()
    if _ABSOLUTE_URL.match(url):
        parts = urlsplit(url)
        url = parts.path + (f"?{parts.query}" if parts.query else "")
    if not url.startswith("/"):
        url = "/" + url
    return url


def path_extension(path: str) -> str:
    """Lower-case extension of the path portion of ``path`` (no query/fragment)."""
    bare = urlsplit(path).path
    return posixpath.splitext(bare)[1].lstrip(".").lower()


def asset_kind(path: str) -> Optional[AssetKind]:
    for kind in AssetKind:
        if path.startswith(kind.prefix):
            return kind
    return None


def js_load_priority(url: str) -> str:
    """Return ``"defer"`` for scripts that can safely load after parsing."""
    lowered = url.lower()
    for pattern in DEFER_CANDIDATES:
        if pattern.lower() in lowered:
            return "defer"
    return "normal"


def is_critical(path: str, excluded: Iterable[str] = CRITICAL_FILES) -> bool:
    return any(entry and entry in path for entry in excluded)


class PathClassifier:
    """Pure classifier over the exclusion and extension sets."""

    def __init__(
        self,
        excluded: Iterable[str] = CRITICAL_FILES,
        safe_extensions: Iterable[str] = SAFE_EXTENSIONS,
    ) -> None:
        self.excluded = tuple(excluded)
        self.safe_extensions = frozenset(ext.lower() for ext in safe_extensions)

    def is_excluded(self, path: str) -> bool:
        return is_critical(path, self.excluded)

    def classify(self, url: str) -> Classification:
        if not url or not url.strip():
            return Classification(False, None, "empty")
        path = normalize_path(url)
        kind = asset_kind(path)
        if kind is None:
            return Classification(False, None, "not static or media")

        reference = AssetReference(
            raw_url=url,
            normalized_path=path,
            kind=kind,
            extension=path_extension(path),
        )
        if not reference.cdn_path.strip("/"):
            return Classification(False, reference, "empty CDN path")
        if self.is_excluded(path):
            return Classification(False, reference, "critical file")
        merged = any(marker in path for marker in MERGED_CACHE_MARKERS)
        if not merged and reference.extension not in self.safe_extensions:
            return Classification(False, reference, "unsupported extension")
        return Classification(True, reference, "merged bundle" if merged else "")
