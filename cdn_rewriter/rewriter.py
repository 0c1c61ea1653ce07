"""Rewrite local static and media asset URLs in an HTML document to the CDN."""

from __future__ import annotations

import json
import logging
import re
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from .cache import CacheState, ReplacementCache
from .classifier import PathClassifier, js_load_priority, path_extension
from .models import AssetKind, CdnTarget, RewriteStats
from .snippets import WEBP_CLS_STYLE
from .transforms import inject_after_head_open
from .utils import append_query_param, logger as base_logger

CACHE_TTL_SECONDS = 31536000
TTL_PARAM = "ttl"
LCP_HINTS = ("home-main", "hero", "banner", "slider")
CLS_FIX_CLASS = "image-cls-fix"

Dimensions = Tuple[int, int]
DimensionProbe = Callable[[str], Optional[Dimensions]]

BULK_PATTERN = re.compile(r"""(href|src)=['"](/[^"']+\.(?:js|css)(?:\?[^'"]*)?)['"]""")
QUOTED_ASSET_PATTERN = re.compile(r"""['"](/[^"']+\.(?:js|css)(?:\?[^'"]*)?)['"]""")
JS_CONFIG_PATTERN = re.compile(r"var\s+(?:config|gallery)(?:Data)?\s*=\s*(\{.*?\});", re.S)
JS_CONFIG_IMAGE_PATTERN = re.compile(
    r'"(?:img|image|thumbnail|full|large)"\s*:\s*"([^"]+\.(?:jpg|jpeg|png|gif))"'
)
GALLERY_DATA_ATTRIBUTES = ("data-src", "data-large-image", "data-medium-image", "data-thumb")
JSON_IMAGE_KEYS = "img|image|thumbnail|small_image|large_image|full"

_CLASS_ATTR = re.compile(r"""\bclass=(['"])(.*?)\1""", re.I)


def _cdn_host_pattern(base_url: str) -> str:
    """Regex source matching the CDN root with or without its scheme."""
    root = base_url.rstrip("/")
    root = re.sub(r"^https?:", "", root, flags=re.I)
    return r"(?:https?:)?" + re.escape(root)


class UrlRewriter:
    """Maps every eligible local asset reference in a document to its CDN URL."""

    def __init__(
        self,
        cdn_target: Union[CdnTarget, str],
        *,
        base_url: str = "",
        secure_base_url: str = "",
        classifier: Optional[PathClassifier] = None,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
        webp: bool = False,
        dimension_probe: Optional[DimensionProbe] = None,
    ) -> None:
        if isinstance(cdn_target, str):
            cdn_target = CdnTarget(cdn_target)
        self.cdn_target = cdn_target
        self.base_url = base_url.rstrip("/")
        self.secure_base_url = secure_base_url.rstrip("/")
        self.classifier = classifier or PathClassifier()
        self.logger = logger or base_logger
        self.webp = webp
        self.dimension_probe = dimension_probe

    def rewrite(
        self,
        html: str,
        candidate_urls: Iterable[str] = (),
        cache: Optional[ReplacementCache] = None,
    ) -> Tuple[str, RewriteStats]:
        """Run every rewrite pass over ``html`` and return it with counters."""
        stats = RewriteStats()
        if not self.cdn_target:
            self.logger.warning("CDN base URL is empty, skipping URL rewrite")
            return html, stats
        if not html:
            return html, stats
        cache = cache if cache is not None else ReplacementCache()

        html = self._bulk_pass(html, cache, stats)

        # Custom URLs keep the configured order so CSS/JS load order is preserved.
        for url in candidate_urls:
            if cache.state(url) is CacheState.REPLACED:
                continue
            html = self.process_url(html, url, cache, stats)

        for url in _unique(QUOTED_ASSET_PATTERN.findall(html)):
            if not self._is_local(url) or cache.is_processed(url):
                continue
            html = self.process_url(html, url, cache, stats)

        if stats.replacement_count:
            self.logger.info("Replaced %d URLs with CDN URLs", stats.replacement_count)
            self.logger.debug("Replaced URLs: %s", json.dumps(stats.replaced_urls))
            if stats.failed_urls:
                self.logger.debug("Failed to replace URLs: %s", json.dumps(stats.failed_urls))

        for block in JS_CONFIG_PATTERN.findall(html):
            for image_url in JS_CONFIG_IMAGE_PATTERN.findall(block):
                if not self._is_local(image_url):
                    continue
                html = self.process_url(html, image_url, cache, stats)

        if self.webp:
            html = self.enhance_images_with_webp(html, self.dimension_probe)
        return self.add_cache_ttl(html), stats

    def _is_local(self, url: str) -> bool:
        """True for root-relative asset paths and URLs on the store's own host."""
        if url.startswith((AssetKind.STATIC.prefix, AssetKind.MEDIA.prefix)):
            return True
        for base in (self.base_url, self.secure_base_url):
            if base and url.startswith(base + "/"):
                return True
        return False

    def _bulk_pass(self, html: str, cache: ReplacementCache, stats: RewriteStats) -> str:
        decisions: Dict[str, Optional[str]] = {}

        def decide(url: str) -> Optional[str]:
            if not self._is_local(url):
                return None
            if cache.is_processed(url):
                return None
            classification = self.classifier.classify(url)
            if classification.reference is None:
                return None
            if not classification.eligible:
                cache.mark_skipped(url)
                return None
            return self.cdn_target.url_for(classification.reference)

        def replace(match: "re.Match[str]") -> str:
            url = match.group(2)
            if url not in decisions:
                decisions[url] = decide(url)
            cdn_url = decisions[url]
            if cdn_url is None:
                return match.group(0)
            stats.replacement_count += 1
            stats.replaced_urls[url] = cdn_url
            replacement = match.group(0).replace(url, cdn_url)
            if match.group(1) == "src" and js_load_priority(url) == "defer":
                if _needs_defer(match.string, match.start(), match.end()):
                    replacement += " defer"
            return replacement

        html = BULK_PATTERN.sub(replace, html)
        for url, cdn_url in decisions.items():
            if cdn_url is not None:
                cache.mark_replaced(url)
        return html

    def process_url(
        self,
        html: str,
        url: str,
        cache: ReplacementCache,
        stats: RewriteStats,
    ) -> str:
        """Rewrite every occurrence of one URL; failures leave ``html`` untouched."""
        try:
            return self._process_url(html, url, cache, stats)
        except Exception:  # pylint: disable=broad-except
            self.logger.error("Error processing URL %s", url, exc_info=True)
            stats.failed_urls.append(url)
            return html

    def _process_url(
        self,
        html: str,
        url: str,
        cache: ReplacementCache,
        stats: RewriteStats,
    ) -> str:
        if not url or not url.strip():
            return html
        classification = self.classifier.classify(url)
        reference = classification.reference
        if reference is None:
            return html
        path = reference.normalized_path
        if cache.is_processed(path):
            return html
        if not classification.eligible:
            cache.mark_skipped(path)
            return html

        cdn_url = self.cdn_target.url_for(reference)
        original = html
        escaped = re.escape(path)
        count = 0

        for base in (self.base_url, self.secure_base_url):
            if base:
                absolute = base + path
                found = html.count(absolute)
                if found:
                    html = html.replace(absolute, cdn_url)
                    count += found

        def keep_groups(match: "re.Match[str]") -> str:
            return match.group(1) + cdn_url + match.group(2)

        html, n = re.subn(r"""(\shref=["'])""" + escaped + r"""(["'])""", keep_groups, html)
        count += n

        defer = path_extension(path) == "js" and js_load_priority(path) == "defer"

        def replace_src(match: "re.Match[str]") -> str:
            replacement = match.group(1) + cdn_url + match.group(2)
            if defer and _needs_defer(match.string, match.start(), match.end()):
                replacement += " defer"
            return replacement

        html, n = re.subn(r"""(\ssrc=["'])""" + escaped + r"""(["'])""", replace_src, html)
        count += n

        def css_url(_match: "re.Match[str]") -> str:
            return f"url({cdn_url})"

        for pattern in (
            r"""url\(['"]?""" + escaped + r"""['"]?\)""",
            r"""url\(['"]""" + escaped + r"""['"]?\)""",
            r"url\(" + escaped + r"\)",
        ):
            html, n = re.subn(pattern, css_url, html)
            count += n

        html, n = re.subn(
            r"""(["'])""" + escaped + r"\1",
            lambda match: match.group(1) + cdn_url + match.group(1),
            html,
        )
        count += n

        html, n = re.subn(
            r'"(?:' + JSON_IMAGE_KEYS + r')":\s*"([^"]*?' + escaped + r'[^"]*?)"',
            lambda match: match.group(0).replace(match.group(1), cdn_url),
            html,
            flags=re.I,
        )
        count += n

        for attribute in GALLERY_DATA_ATTRIBUTES:
            html, n = re.subn(
                "(" + re.escape(attribute) + r""")=(["'])""" + escaped + r"""(["'])""",
                lambda match: f"{match.group(1)}={match.group(2)}{cdn_url}{match.group(3)}",
                html,
                flags=re.I,
            )
            count += n

        html, n = re.subn(
            r"""(<link[^>]*rel=['"]preload['"][^>]*as=['"]font['"][^>]*href=['"])"""
            + escaped
            + r"""(['"][^>]*>)""",
            keep_groups,
            html,
            flags=re.I,
        )
        count += n

        html, n = re.subn(
            r"""data-(full|img|thumb|large_image)=(["'])""" + escaped + r"""(["'])""",
            lambda match: f"data-{match.group(1)}={match.group(2)}{cdn_url}{match.group(3)}",
            html,
            flags=re.I,
        )
        count += n

        stats.replacement_count += count
        if html != original:
            self.logger.debug("Replaced URL: %s with %s", path, cdn_url)
            stats.replaced_urls[path] = cdn_url
            cache.mark_replaced(path)
        return html

    def _probe(self, dimension_probe: DimensionProbe, src: str) -> Optional[Dimensions]:
        try:
            return dimension_probe(src)
        except Exception:  # pylint: disable=broad-except
            self.logger.warning("Could not probe dimensions of %s", src, exc_info=True)
            return None

    def add_cache_ttl(self, html: str) -> str:
        """Append the long-lived ``ttl`` parameter to CDN script, style and image tags."""
        if not self.cdn_target:
            return html
        host = _cdn_host_pattern(self.cdn_target.base_url)
        patterns = (
            r"(<script\s(?:[^>]*\s)?src=)(['\"])(" + host + r"/[^\"']+\.js)(\?[^'\"]*)?(['\"])",
            r"(<link\s(?:[^>]*\s)?href=)(['\"])(" + host + r"/[^\"']+\.css)(\?[^'\"]*)?(['\"])",
            r"(<img\s(?:[^>]*\s)?src=)(['\"])("
            + host
            + r"/[^\"']+\.(?:jpg|jpeg|png|gif|webp))(\?[^'\"]*)?(['\"])",
        )

        def add_ttl(match: "re.Match[str]") -> str:
            query = match.group(4) or ""
            if TTL_PARAM + "=" in query:
                return match.group(0)
            url = append_query_param(match.group(3) + query, TTL_PARAM, str(CACHE_TTL_SECONDS))
            return match.group(1) + match.group(2) + url + match.group(5)

        for pattern in patterns:
            html = re.sub(pattern, add_ttl, html, flags=re.I)
        return html

    def enhance_images_with_webp(
        self,
        html: str,
        dimension_probe: Optional[DimensionProbe] = None,
    ) -> str:
        """Wrap CDN raster images in ``<picture>`` with a WebP source."""
        if not self.cdn_target:
            return html
        if f".{CLS_FIX_CLASS} {{" not in html:
            html = inject_after_head_open(html, WEBP_CLS_STYLE)

        host = _cdn_host_pattern(self.cdn_target.base_url)
        pattern = re.compile(
            r"<img(\s(?:[^>]*\s)?)src=['\"]("
            + host
            + r"/[^\"']+\.(jpg|jpeg|png|webp))(\?[^'\"]*)?['\"]([^>]*)>",
            re.I,
        )
        found_main_image = False
        probed: Dict[str, Optional[Dimensions]] = {}

        def enhance(match: "re.Match[str]") -> str:
            nonlocal found_main_image
            before, src, extension, query, after = match.groups()
            query = query or ""
            attributes = before + after
            if CLS_FIX_CLASS in attributes:
                return match.group(0)

            closing = ""
            if after.rstrip().endswith("/"):
                after = after.rstrip()[:-1].rstrip()
                closing = " /"

            cached_src = src + query
            if TTL_PARAM + "=" not in query:
                cached_src = append_query_param(cached_src, TTL_PARAM, str(CACHE_TTL_SECONDS))

            lcp = any(hint in src for hint in LCP_HINTS)
            if not lcp and not found_main_image and "home-" in attributes:
                lcp = True
            if lcp:
                found_main_image = True

            extras = ""
            if _CLASS_ATTR.search(before):
                before = _CLASS_ATTR.sub(_append_cls_class, before, count=1)
            elif _CLASS_ATTR.search(after):
                after = _CLASS_ATTR.sub(_append_cls_class, after, count=1)
            else:
                extras += f' class="{CLS_FIX_CLASS}"'
            if not lcp and "loading=" not in attributes:
                extras += ' loading="lazy"'
            if dimension_probe and "width=" not in attributes and "height=" not in attributes:
                if src not in probed:
                    probed[src] = self._probe(dimension_probe, src)
                dimensions = probed[src]
                if dimensions:
                    extras += f' width="{dimensions[0]}" height="{dimensions[1]}"'

            img = f'<img{before}src="{cached_src}"{after}{extras}{closing}>'
            if extension.lower() == "webp":
                return img
            webp_src = src[: src.rfind(".")] + ".webp"
            webp_src = append_query_param(webp_src, TTL_PARAM, str(CACHE_TTL_SECONDS))
            return f'<picture><source srcset="{webp_src}" type="image/webp">{img}</picture>'

        return pattern.sub(enhance, html)


def _append_cls_class(match: "re.Match[str]") -> str:
    classes = match.group(2).strip()
    value = f"{classes} {CLS_FIX_CLASS}" if classes else CLS_FIX_CLASS
    return f'class="{value}"'


def _needs_defer(document: str, start: int, end: int) -> bool:
    """True when the tag around ``start:end`` is a script lacking defer/async."""
    tag_start = document.rfind("<", 0, start)
    tag_end = document.find(">", end)
    if tag_start == -1 or tag_end == -1:
        return False
    tag = document[tag_start : tag_end + 1]
    if not tag.lower().startswith("<script"):
        return False
    return " defer" not in tag and " async" not in tag


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered
