"""
Tests for the individual performance transforms.
"""
import pytest
from bs4 import BeautifulSoup

from cdn_rewriter import snippets, transforms
from cdn_rewriter.utils import script_json

DOC = (
    "<html><head><title>Shop</title>"
    '<link rel="stylesheet" href="/static/styles.css">'
    '<link rel="stylesheet" href="/static/extra.css">'
    "</head><body>"
    '<div class="page"><img src="/media/banner.jpg" alt=""></div>'
    "</body></html>"
)

ALL_STAGES = [
    transforms.add_script_error_handling,
    transforms.fix_content_security_policy,
    transforms.force_progressive_loading,
    transforms.optimize_network_payloads,
    transforms.implement_html_streaming,
    transforms.optimize_images_advanced,
    transforms.optimize_javascript,
    transforms.optimize_analytics,
    transforms.optimize_critical_path,
    transforms.optimize_tracking,
    transforms.fix_layout_shift,
    transforms.prioritize_above_the_fold,
    transforms.implement_progressive_loading,
]


def page(head="", body=""):
    return f"<html><head>{head}</head><body>{body}</body></html>"


class TestDocumentStructure:
    """Fragments without a head/body pair pass through every stage."""

    @pytest.mark.parametrize("stage", ALL_STAGES, ids=lambda stage: stage.__name__)
    def test_fragment_unchanged(self, stage):
        fragment = '<div class="footer"><img src="/media/a.jpg"></div>'
        assert stage(fragment) == fragment

    @pytest.mark.parametrize("stage", ALL_STAGES, ids=lambda stage: stage.__name__)
    def test_empty_unchanged(self, stage):
        assert stage("") == ""

    def test_has_document_structure(self):
        assert transforms.has_document_structure(DOC)
        assert not transforms.has_document_structure("<html><body></body></html>")

    def test_inject_before_last_body_close(self):
        html = "<body><script>var s = '</body>';</script></body>"
        result = transforms.inject_before_body_close(html, "<!--x-->")
        assert result.endswith("<!--x--></body>")


class TestHeadInjections:
    def test_script_error_handling_first_in_head(self):
        html = transforms.add_script_error_handling(DOC)
        assert html.startswith("<html><head>" + snippets.SCRIPT_ERROR_HANDLING)

    def test_content_security_policy_meta(self):
        html = transforms.fix_content_security_policy(DOC)
        soup = BeautifulSoup(html, "html.parser")
        meta = soup.find("meta", attrs={"http-equiv": "Content-Security-Policy"})
        assert meta["content"] == snippets.content_security_policy()
        assert "'self'" in meta["content"]

    def test_html_streaming(self):
        html = transforms.implement_html_streaming(DOC)
        assert "<head>" + snippets.HTML_STREAMING in html
        assert "<body>" + snippets.RENDER_VISIBILITY in html

    def test_layout_shift_style(self):
        html = transforms.fix_layout_shift(DOC)
        assert snippets.LAYOUT_SHIFT_STYLE + "</head>" in html


class TestForceProgressiveLoading:
    BODY = (
        '<div class="header"><img src="/media/hero.jpg"><img src="/media/logo.png"></div>'
        '<div class="footer"><p>Footer</p></div>'
    )

    def test_cuts_body_at_footer(self):
        html = transforms.force_progressive_loading(page("<title>Shop</title>", self.BODY))
        remaining = '<div class="footer"><p>Footer</p></div>'
        assert "<title>Shop</title>" in html
        assert "window.fullPageContent = " + script_json(remaining) in html
        assert remaining not in html
        assert snippets.PROGRESSIVE_REMAINING_PLACEHOLDER in html

    def test_above_fold_images_wait_for_load(self):
        html = transforms.force_progressive_loading(page("", self.BODY))
        soup = BeautifulSoup(html, "html.parser")
        hero, logo = soup.find_all("img")
        assert hero["data-src"] == "/media/hero.jpg"
        assert hero["src"] == snippets.PLACEHOLDER_IMAGE
        assert logo["src"] == "/media/logo.png"

    def test_whole_body_deferred_without_boundary(self):
        html = transforms.force_progressive_loading(page("", "<p>Only</p>"))
        assert "<p>Only</p>" not in html
        assert script_json("<p>Only</p>") in html

    def test_first_stylesheet_becomes_critical_css(self):
        html = transforms.force_progressive_loading(DOC)
        assert "var cssUrl = " + script_json("/static/styles.css") in html


class TestNetworkPayloads:
    def test_extracts_bundles_and_secondary_stylesheets(self):
        bundle = "https://cdn.jsdelivr.net/gh/acme/assets@main/bundle.js"
        html = transforms.optimize_network_payloads(
            page(
                '<link rel="stylesheet" href="/static/styles.css">'
                '<link rel="stylesheet" href="/static/extra.css">'
                f'<script src="{bundle}"></script>'
            )
        )
        files = [{"type": "js", "url": bundle}, {"type": "css", "url": "/static/extra.css"}]
        assert "var filesToLoad = " + script_json(files) in html
        assert f'src="{bundle}"' not in html
        assert 'href="/static/styles.css"' in html
        assert 'href="/static/extra.css"' not in html

    def test_nothing_to_extract(self):
        html = page('<link rel="stylesheet" href="/static/styles.css">')
        assert transforms.optimize_network_payloads(html) == html


class TestImagesAdvanced:
    def test_placeholder_and_srcset(self):
        html = transforms.optimize_images_advanced(
            page(
                body='<img src="/media/banner.jpg" srcset="/media/banner-2x.jpg 2x" alt="">'
                '<img src="/media/logo.svg">'
            )
        )
        soup = BeautifulSoup(html, "html.parser")
        banner, logo = soup.find_all("img")
        assert banner["src"] == snippets.PLACEHOLDER_IMAGE
        assert banner["data-src"] == "/media/banner.jpg"
        assert banner["data-srcset"] == "/media/banner-2x.jpg 2x"
        assert banner["loading"] == "lazy"
        assert not banner.has_attr("srcset")
        assert logo["src"] == "/media/logo.svg"
        assert snippets.LQIP_LOADER + "</head>" in html

    def test_no_images(self):
        html = page(body="<p>Text</p>")
        assert transforms.optimize_images_advanced(html) == html


class TestJavascript:
    def test_defers_non_critical_scripts(self):
        html = transforms.optimize_javascript(
            page(
                body='<script src="/static/custom.js"></script>'
                '<script src="/static/jquery.js"></script>'
                '<script async src="/static/other.js"></script>'
            )
        )
        assert '<script src="/static/custom.js" defer></script>' in html
        assert '<script src="/static/jquery.js"></script>' in html
        assert '<script async src="/static/other.js"></script>' in html
        assert snippets.DEFERRED_SCRIPT_LOADER + "</body>" in html
        assert "<head>" + snippets.MODULE_PRELOAD_HINT in html


class TestAnalytics:
    def test_moves_analytics_into_loader(self):
        gtag = "https://www.googletagmanager.com/gtag/js?id=GTM-ABC123"
        html = transforms.optimize_analytics(
            page(
                f'<script async src="{gtag}"></script>'
                "<script>window.dataLayer = window.dataLayer || [];</script>"
            )
        )
        assert f'src="{gtag}"' not in html
        assert "var analyticsScripts = " + script_json([gtag]) in html
        assert "var inlineScripts = " + script_json(
            ["window.dataLayer = window.dataLayer || [];"]
        ) in html
        assert 'var gtmId = "GTM-ABC123";' in html

    def test_no_analytics(self):
        html = page('<script src="/static/app.js"></script>')
        assert transforms.optimize_analytics(html) == html


class TestCriticalPath:
    def test_preloads_styles_and_loader_scripts(self):
        html = transforms.optimize_critical_path(
            DOC.replace("</body>", '<script src="/static/requirejs/require.js"></script></body>')
        )
        assert '<link rel="preload" href="/static/styles.css" as="style"' in html
        assert '<link rel="preload" href="/static/extra.css" as="style"' in html
        assert '<link rel="preload" href="/static/requirejs/require.js" as="script"' in html

    def test_is_idempotent(self):
        once = transforms.optimize_critical_path(DOC)
        assert transforms.optimize_critical_path(once) == once

    def test_print_stylesheets_are_not_preloaded(self):
        html = transforms.optimize_critical_path(
            page('<link rel="stylesheet" href="/static/print.css" media="print">')
        )
        assert 'rel="preload"' not in html


class TestTracking:
    def test_tracker_becomes_placeholder(self):
        pixel = "https://connect.facebook.net/en_US/fbevents.js"
        html = transforms.optimize_tracking(page(body=f'<script src="{pixel}"></script>'))
        assert f'<script data-tracking-src="{pixel}" type="text/plain"></script>' in html
        assert snippets.TRACKING_LOADER + "</body>" in html

    def test_no_optimize_marker_is_respected(self):
        pixel = "https://connect.facebook.net/en_US/fbevents.js"
        html = page(body=f'<script noOptimize src="{pixel}"></script>')
        assert transforms.optimize_tracking(html) == html


class TestAboveTheFold:
    def test_lazy_images_and_blocks(self):
        footer = "<p>" + "x" * 600 + "</p>"
        html = transforms.prioritize_above_the_fold(
            DOC.replace(
                "</body>",
                '<img class="above-the-fold" src="/media/hero.jpg">'
                f'<div class="footer">{footer}</div></body>',
            )
        )
        soup = BeautifulSoup(html, "html.parser")
        banner, hero = soup.find_all("img")
        assert banner["data-lazy-src"] == "/media/banner.jpg"
        assert banner["loading"] == "lazy"
        assert hero["src"] == "/media/hero.jpg"
        block = soup.find("div", class_="footer")
        assert block["data-lazy-html"] == footer
        assert block.text == ""
        assert "var criticalCssUrl = " + script_json("/static/styles.css") in html

    def test_short_blocks_are_kept(self):
        html = transforms.prioritize_above_the_fold(
            page(body='<div class="footer"><p>Short</p></div>')
        )
        assert '<div class="footer"><p>Short</p></div>' in html


class TestProgressiveLoading:
    def test_secondary_stylesheets_do_not_block(self):
        html = transforms.implement_progressive_loading(DOC)
        soup = BeautifulSoup(html, "html.parser")
        first, second = soup.find_all("link", rel="stylesheet")
        assert not first.has_attr("media")
        assert second["media"] == "print"
        assert second["onload"] == "this.media='all'"
        assert "<body>" + snippets.PRIORITY_LOADER in html


class TestSnippets:
    def test_snippets_carry_no_asset_markup(self):
        for name in dir(snippets):
            value = getattr(snippets, name)
            if not name.isupper() or not isinstance(value, str):
                continue
            assert "<img" not in value, name
            assert "<link" not in value, name

    def test_render(self):
        assert snippets.render("a {{X}} b", X='"1"') == 'a "1" b'
