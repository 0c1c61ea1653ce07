"""Per-response entry point: rewrite asset URLs, then run the transforms."""

from __future__ import annotations

import re
from typing import Optional, Protocol

from .cache import ReplacementCache
from .classifier import PathClassifier
from .config import CdnConfig
from .images import probe_image_dimensions
from .pipeline import TransformPipeline
from .rewriter import DimensionProbe, UrlRewriter
from .utils import gated_logger

ADMIN_PATH_MARKER = "/admin/"
IMG_TAG = re.compile(r"<img\b[^>]*>", re.I)


class ResponseBody(Protocol):
    """Accessor/mutator pair over the HTTP response body."""

    def get_body(self) -> str:
        ...

    def set_body(self, body: str) -> None:
        ...


def add_native_lazy_loading(html: str) -> str:
    """Give every image a ``loading`` hint; the first image stays eager."""
    first = True

    def hint(match: "re.Match[str]") -> str:
        nonlocal first
        tag = match.group(0)
        is_first, first = first, False
        if "loading=" in tag or "above-the-fold" in tag:
            return tag
        value = "eager" if is_first else "lazy"
        body = tag[:-1].rstrip()
        closing = ">"
        if body.endswith("/"):
            body = body[:-1].rstrip()
            closing = " />"
        return f'{body} loading="{value}"{closing}'

    return IMG_TAG.sub(hint, html)


class HtmlResponseProcessor:
    """Applies URL rewriting and performance transforms to one HTML response."""

    def __init__(
        self,
        config: CdnConfig,
        *,
        request_path: str = "",
        dimension_probe: Optional[DimensionProbe] = None,
    ) -> None:
        self.config = config
        self.request_path = request_path
        self.logger = gated_logger(config.debug_mode)
        self.dimension_probe = dimension_probe

    def should_process(self) -> bool:
        if not self.config.enabled:
            return False
        if ADMIN_PATH_MARKER in self.request_path:
            self.logger.debug("Skipping admin path: %s", self.request_path)
            return False
        return True

    def process(self, response: ResponseBody) -> None:
        if not self.should_process():
            return
        html = response.get_body()
        if not html:
            return
        processed = self.process_html(html)
        if processed != html:
            response.set_body(processed)

    def process_html(self, html: str) -> str:
        if not html or not self.should_process():
            return html

        try:
            html = self._rewrite(html)
        except Exception:  # pylint: disable=broad-except
            self.logger.exception("URL rewrite failed; serving original asset URLs")

        if self.config.lazy_loading_enabled:
            try:
                html = add_native_lazy_loading(html)
            except Exception:  # pylint: disable=broad-except
                self.logger.exception("Native lazy loading failed")

        if self.config.performance_active:
            try:
                html = TransformPipeline(self.config, self.logger).run(html)
            except Exception:  # pylint: disable=broad-except
                self.logger.exception("Performance transforms failed")
        return html

    def _rewrite(self, html: str) -> str:
        config = self.config
        rewriter = UrlRewriter(
            config.cdn_target(),
            base_url=config.base_url,
            secure_base_url=config.secure_base_url,
            classifier=PathClassifier(config.excluded_substrings(), config.safe_extensions()),
            logger=self.logger,
            webp=config.webp_enabled,
            dimension_probe=self._dimension_probe(),
        )
        html, _stats = rewriter.rewrite(html, config.custom_urls, ReplacementCache())
        return html

    def _dimension_probe(self) -> Optional[DimensionProbe]:
        if not self.config.dimension_probe_enabled:
            return None
        return self.dimension_probe or probe_image_dimensions
