"""Individual ``(html) -> html`` performance transforms.

Every stage is a no-op on documents that lack a ``<head>``/``<body>`` pair and
never raises for missing content. Stages work on the full document text,
including markup injected by earlier stages.
"""

from __future__ import annotations

import functools
import html as html_lib
import re
from typing import Callable, Dict, List, Optional, Tuple

from . import snippets
from .utils import script_json

Transform = Callable[[str], str]

HEAD_OPEN = re.compile(r"<head(?:\s[^>]*)?>", re.I)
HEAD_CLOSE = re.compile(r"</head\s*>", re.I)
BODY_OPEN = re.compile(r"<body(?:\s[^>]*)?>", re.I)
BODY_CLOSE = re.compile(r"</body\s*>", re.I)

STYLESHEET_TAG = re.compile(r"""<link\b[^>]*\brel=['"]stylesheet['"][^>]*>""", re.I)
HREF_ATTR = re.compile(r"""\shref=(['"])([^'"]+)\1""", re.I)
SRCSET_ATTR = re.compile(r"""\ssrcset=(['"])(.*?)\1""", re.I)
IMG_WITH_SRC = re.compile(r"""<img\b([^>]*?)\ssrc=(['"])((?!data:)[^'"]+)\2([^>]*)>""", re.I)
WIDTH_ATTR = re.compile(r"""\bwidth=["'](\d+)["']""", re.I)

FOLD_BOUNDARY = re.compile(
    r"""<div[^>]*(?:class|id)=['"](?:footer|sidebar|secondary|menu-footer|newsletter)""", re.I
)
REMOTE_BUNDLE_SCRIPT = re.compile(
    r"""<script\b[^>]*\ssrc=['"]((?:https?:)?//[^/'"]*(?:jsdelivr|cdn|static|_cache)[^/'"]*[^'"]*)['"][^>]*>\s*</script>""",
    re.I,
)
ANALYTICS_SCRIPT = re.compile(
    r"""<script\b[^>]*\ssrc=['"]((?:https?:)?//[^/'"]*(?:google|gtag|gtm|analytics|facebook)[^/'"]*[^'"]*)['"][^>]*>\s*</script>""",
    re.I,
)
INLINE_ANALYTICS_SCRIPT = re.compile(
    r"<script[^>]*>\s*(?:window\.dataLayer|window\.gtag|!function\(w,d,s,l,i\)|\(function\(w,d,s,l,i\)).*?</script>",
    re.S,
)
INLINE_ANALYTICS_MARKERS = ("googletagmanager", "gtag", "dataLayer", "fbq", "google")
SCRIPT_TAGS = re.compile(r"</?script[^>]*>", re.I)
GTM_ID = re.compile(r"GTM-[A-Z0-9]+", re.I)
TRACKING_SCRIPT = re.compile(
    r"""<script\b([^>]*?)\ssrc=['"]((?:https?:)?//[^/'"]*(?:google-analytics|googletagmanager|facebook|fbcdn|analytics|pixel|gtm|tag)[^/'"]*[^'"]*)['"]([^>]*)>\s*</script>""",
    re.I,
)
SCRIPT_WITH_SRC = re.compile(
    r"""<script\b([^>]*?)\ssrc=(['"])([^'"]+\.js(?:\?[^'"]*)?)\2([^>]*)>\s*</script>""", re.I
)
CRITICAL_SCRIPT = re.compile(
    r"""<script\b[^>]*\ssrc=['"]([^'"]+(?:require\.js|jquery[^/'"]*\.js)(?:\?[^'"]*)?)['"]""", re.I
)
LAZY_HTML_DIV = re.compile(
    r"""<div\b([^>]*?)\sclass=(['"])([^'"]*)\2([^>]*)>((?:(?!<div\b|<script\b).)*?)</div>""",
    re.I | re.S,
)

NON_DEFERRABLE_SCRIPTS = ("require", "jquery", "checkout", "customer", "catalog")
LAZY_HTML_CLASSES = (
    "footer",
    "widget",
    "sidebar",
    "additional",
    "block-bottom",
    "newsletter",
    "social-links",
    "copyright",
    "links",
    "menu-footer",
    "secondary",
)
LAZY_HTML_MIN_CHARS = 500
SMALL_IMAGE_WIDTH = 60


def has_document_structure(html: str) -> bool:
    """True when the document carries both an opening and closing head and body."""
    if not html:
        return False
    return all(
        pattern.search(html) for pattern in (HEAD_OPEN, HEAD_CLOSE, BODY_OPEN, BODY_CLOSE)
    )


def document_stage(func: Transform) -> Transform:
    """Make ``func`` return its input unchanged for documents without head and body."""

    @functools.wraps(func)
    def wrapper(html: str) -> str:
        if not has_document_structure(html):
            return html
        return func(html)

    return wrapper


def inject_after_head_open(html: str, snippet: str) -> str:
    match = HEAD_OPEN.search(html)
    if not match:
        return html
    return html[: match.end()] + snippet + html[match.end() :]


def inject_before_head_close(html: str, snippet: str) -> str:
    match = HEAD_CLOSE.search(html)
    if not match:
        return html
    return html[: match.start()] + snippet + html[match.start() :]


def inject_after_body_open(html: str, snippet: str) -> str:
    match = BODY_OPEN.search(html)
    if not match:
        return html
    return html[: match.end()] + snippet + html[match.end() :]


def inject_before_body_close(html: str, snippet: str) -> str:
    """Insert ``snippet`` before the last ``</body>`` in the document."""
    last: Optional[re.Match] = None
    for last in BODY_CLOSE.finditer(html):
        pass
    if last is None:
        return html
    return html[: last.start()] + snippet + html[last.start() :]


def stylesheet_urls(html: str) -> List[str]:
    urls = []
    for tag in STYLESHEET_TAG.findall(html):
        href = HREF_ATTR.search(tag)
        if href:
            urls.append(href.group(2))
    return urls


def head_section(html: str) -> str:
    start = HEAD_OPEN.search(html)
    end = HEAD_CLOSE.search(html)
    if not start or not end or end.start() < start.end():
        return ""
    return html[start.end() : end.start()]


def _is_small_image(tag: str) -> bool:
    if "logo" in tag or "icon" in tag:
        return True
    width = WIDTH_ATTR.search(tag)
    return bool(width) and int(width.group(1)) < SMALL_IMAGE_WIDTH


def _split_srcset(attributes: str) -> Tuple[str, str]:
    """Remove ``srcset`` from ``attributes`` and return (attributes, srcset)."""
    match = SRCSET_ATTR.search(attributes)
    if not match:
        return attributes, ""
    return attributes[: match.start()] + attributes[match.end() :], match.group(2)


@document_stage
def add_script_error_handling(html: str) -> str:
    return inject_after_head_open(html, snippets.SCRIPT_ERROR_HANDLING)


@document_stage
def fix_content_security_policy(html: str) -> str:
    meta = (
        '<meta http-equiv="Content-Security-Policy" content="'
        + html_lib.escape(snippets.content_security_policy(), quote=True)
        + '">'
    )
    return inject_after_head_open(html, meta)


@document_stage
def force_progressive_loading(html: str) -> str:
    """Ship only above-the-fold markup and restore the rest from inline JSON.

    The original ``<head>`` is kept. The body is cut at the first footer,
    sidebar or newsletter container; everything after the cut is replaced by
    a spinner placeholder plus ``window.fullPageContent`` and is restored on
    the first interaction or after one second.
    """
    body_open = BODY_OPEN.search(html)
    body_close = None
    for body_close in BODY_CLOSE.finditer(html):
        pass
    if not body_open or body_close is None or body_close.start() < body_open.end():
        return html

    content = html[body_open.end() : body_close.start()]
    boundary = FOLD_BOUNDARY.search(content)
    if boundary:
        above, remaining = content[: boundary.start()], content[boundary.start() :]
    else:
        above, remaining = "", content

    def defer_image(match: "re.Match[str]") -> str:
        tag = match.group(0)
        if _is_small_image(tag):
            return tag
        before, quote, src, after = match.groups()
        return (
            f'<img{before} src="{snippets.PLACEHOLDER_IMAGE}" '
            f"data-src={quote}{src}{quote}{after}>"
        )

    above = IMG_WITH_SRC.sub(defer_image, above)
    first_css = next(iter(stylesheet_urls(html)), "")

    body = (
        above
        + snippets.PROGRESSIVE_REMAINING_PLACEHOLDER
        + snippets.render(snippets.PROGRESSIVE_CONTENT, CONTENT=script_json(remaining))
    )
    html = html[: body_open.end()] + body + html[body_close.start() :]
    shell = (
        snippets.PROGRESSIVE_SHELL_STYLE
        + snippets.render(snippets.PROGRESSIVE_CRITICAL_CSS, CSS_URL=script_json(first_css))
        + snippets.PROGRESSIVE_LOADER
    )
    return inject_before_head_close(html, shell)


@document_stage
def optimize_network_payloads(html: str) -> str:
    """Replace CDN bundles and secondary stylesheets with a chunked loader."""
    files: List[Dict[str, str]] = []

    def take_script(match: "re.Match[str]") -> str:
        files.append({"type": "js", "url": match.group(1)})
        return ""

    html = REMOTE_BUNDLE_SCRIPT.sub(take_script, html)

    seen_first = False

    def take_stylesheet(match: "re.Match[str]") -> str:
        nonlocal seen_first
        if not seen_first:
            seen_first = True
            return match.group(0)
        href = HREF_ATTR.search(match.group(0))
        if not href or "critical" in href.group(2):
            return match.group(0)
        files.append({"type": "css", "url": href.group(2)})
        return ""

    html = STYLESHEET_TAG.sub(take_stylesheet, html)
    if not files:
        return html
    loader = snippets.render(snippets.NETWORK_PAYLOAD_LOADER, FILES=script_json(files))
    return inject_before_head_close(html, loader)


@document_stage
def implement_html_streaming(html: str) -> str:
    html = inject_after_head_open(html, snippets.HTML_STREAMING)
    return inject_after_body_open(html, snippets.RENDER_VISIBILITY)


@document_stage
def optimize_images_advanced(html: str) -> str:
    """Switch images to ``data-src`` with a blurred placeholder (LQIP)."""

    def lazy(match: "re.Match[str]") -> str:
        before, _quote, src, after = match.groups()
        attributes = before + after
        if "logo" in attributes or "icon" in attributes or "logo" in src or "icon" in src:
            return match.group(0)
        if "data-src=" in attributes:
            return match.group(0)
        before, srcset = _split_srcset(before)
        if not srcset:
            after, srcset = _split_srcset(after)
        extra = f' data-srcset="{srcset}"' if srcset else ""
        if "loading=" not in attributes:
            extra += ' loading="lazy"'
        return f'<img{before} src="{snippets.PLACEHOLDER_IMAGE}" data-src="{src}"{extra}{after}>'

    html, count = IMG_WITH_SRC.subn(lazy, html)
    if not count:
        return html
    return inject_before_head_close(html, snippets.LQIP_LOADER)


@document_stage
def optimize_javascript(html: str) -> str:
    """Add ``defer`` to non-critical external scripts."""
    html = inject_after_head_open(html, snippets.MODULE_PRELOAD_HINT)
    html = inject_before_body_close(html, snippets.DEFERRED_SCRIPT_LOADER)

    def defer(match: "re.Match[str]") -> str:
        before, quote, src, after = match.groups()
        lowered = src.lower()
        if any(name in lowered for name in NON_DEFERRABLE_SCRIPTS):
            return match.group(0)
        if re.search(r"\b(?:defer|async|critical)\b", before + after, re.I):
            return match.group(0)
        after = after.rstrip()
        return f"<script{before} src={quote}{src}{quote}{after} defer></script>"

    return SCRIPT_WITH_SRC.sub(defer, html)


@document_stage
def optimize_analytics(html: str) -> str:
    """Pull analytics and tag-manager scripts into an interaction-gated loader."""
    external: List[str] = []

    def take_external(match: "re.Match[str]") -> str:
        external.append(match.group(1))
        return ""

    html = ANALYTICS_SCRIPT.sub(take_external, html)

    inline: List[str] = []

    def take_inline(match: "re.Match[str]") -> str:
        script = match.group(0)
        if not any(marker in script for marker in INLINE_ANALYTICS_MARKERS):
            return script
        inline.append(SCRIPT_TAGS.sub("", script).strip())
        return ""

    html = INLINE_ANALYTICS_SCRIPT.sub(take_inline, html)
    if not external and not inline:
        return html

    gtm_id = ""
    for src in external:
        match = GTM_ID.search(src)
        if match:
            gtm_id = match.group(0)
            break

    loader = snippets.render(
        snippets.ANALYTICS_LOADER,
        SCRIPTS=script_json(external),
        INLINE=script_json(inline),
        GTM_ID=script_json(gtm_id),
    )
    return inject_before_head_close(html, loader)


@document_stage
def optimize_critical_path(html: str) -> str:
    """Preload the first two stylesheets and the core loader scripts."""
    resources = []
    for tag in STYLESHEET_TAG.findall(html)[:2]:
        href = HREF_ATTR.search(tag)
        if not href or "print" in href.group(2) or re.search(r"""media=['"]print""", tag, re.I):
            continue
        resources.append(("style", href.group(2)))
    for src in CRITICAL_SCRIPT.findall(html):
        resources.append(("script", src))

    seen = set()
    tags = []
    for kind, href in resources:
        if href in seen:
            continue
        seen.add(href)
        if re.search(r"""rel=['"]preload['"][^>]*href=['"]""" + re.escape(href) + "['\"]", html):
            continue
        tags.append(f'<link rel="preload" href="{href}" as="{kind}" crossorigin="anonymous">\n')
    if not tags:
        return html
    return inject_before_head_close(html, "".join(tags))


@document_stage
def optimize_tracking(html: str) -> str:
    """Turn third-party tracker scripts into inert placeholders."""

    replaced = 0

    def placeholder(match: "re.Match[str]") -> str:
        nonlocal replaced
        before, src, after = match.groups()
        if "noOptimize" in before + after:
            return match.group(0)
        replaced += 1
        return f'<script data-tracking-src="{src}" type="text/plain"></script>'

    html = TRACKING_SCRIPT.sub(placeholder, html)
    if not replaced:
        return html
    return inject_before_body_close(html, snippets.TRACKING_LOADER)


@document_stage
def fix_layout_shift(html: str) -> str:
    return inject_before_head_close(html, snippets.LAYOUT_SHIFT_STYLE)


@document_stage
def prioritize_above_the_fold(html: str) -> str:
    """Inline the first stylesheet and lazy-load images and heavy footer blocks."""
    critical_css = next(iter(stylesheet_urls(head_section(html))), "")
    loader = snippets.render(snippets.ABOVE_THE_FOLD_LOADER, CSS_URL=script_json(critical_css))
    html = inject_before_head_close(html, loader)

    def lazy_image(match: "re.Match[str]") -> str:
        before, _quote, src, after = match.groups()
        attributes = before + after
        if "above-the-fold" in attributes or "loading=" in attributes:
            return match.group(0)
        if "data-lazy-src" in attributes or "data-src=" in attributes:
            return match.group(0)
        before, srcset = _split_srcset(before)
        if not srcset:
            after, srcset = _split_srcset(after)
        extra = f' data-lazy-srcset="{srcset}"' if srcset else ""
        return (
            f'<img{before} src="{snippets.PLACEHOLDER_IMAGE}" data-lazy-src="{src}"'
            f'{extra} loading="lazy"{after}>'
        )

    html = IMG_WITH_SRC.sub(lazy_image, html)

    def lazy_block(match: "re.Match[str]") -> str:
        before, _quote, classes, after, content = match.groups()
        if not any(name in classes for name in LAZY_HTML_CLASSES):
            return match.group(0)
        if len(content) < LAZY_HTML_MIN_CHARS or "data-lazy-html" in before + after:
            return match.group(0)
        escaped = html_lib.escape(content, quote=True)
        return f'<div{before} class="{classes}"{after} data-lazy-html="{escaped}"></div>'

    return LAZY_HTML_DIV.sub(lazy_block, html)


@document_stage
def implement_progressive_loading(html: str) -> str:
    """Load stylesheets after the first without blocking render."""
    html = inject_after_body_open(html, snippets.PRIORITY_LOADER)
    seen_first = False

    def non_blocking(match: "re.Match[str]") -> str:
        nonlocal seen_first
        tag = match.group(0)
        if not seen_first:
            seen_first = True
            return tag
        href = HREF_ATTR.search(tag)
        if re.search(r"\smedia=", tag, re.I) or (href and "print" in href.group(2)):
            return tag
        body = tag[:-1].rstrip()
        closing = ">"
        if body.endswith("/"):
            body = body[:-1].rstrip()
            closing = " />"
        return body + ' media="print" onload="this.media=\'all\'"' + closing

    return STYLESHEET_TAG.sub(non_blocking, html)
