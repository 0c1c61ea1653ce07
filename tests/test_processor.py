"""
Tests for the per-response processor.
"""
from bs4 import BeautifulSoup

from cdn_rewriter import processor as processor_module
from cdn_rewriter.processor import HtmlResponseProcessor, add_native_lazy_loading


class BrokenRewriter:
    def __init__(self, *args, **kwargs):
        pass

    def rewrite(self, html, *args, **kwargs):
        raise RuntimeError("rewrite exploded")


class TestShouldProcess:
    def test_disabled_module(self, config, simple_page):
        config.enabled = False
        processor = HtmlResponseProcessor(config)
        assert not processor.should_process()
        assert processor.process_html(simple_page) == simple_page

    def test_admin_path_is_skipped(self, config, simple_page):
        processor = HtmlResponseProcessor(config, request_path="/admin/catalog/product/")
        assert processor.process_html(simple_page) == simple_page

    def test_storefront_path(self, config):
        assert HtmlResponseProcessor(config, request_path="/women/tops.html").should_process()


class TestProcess:
    def test_rewrites_asset_urls(self, config, simple_page, cdn_base):
        html = HtmlResponseProcessor(config).process_html(simple_page)
        assert cdn_base + "frontend/Acme/theme/en_US/css/styles.css" in html
        assert "Content-Security-Policy" not in html

    def test_custom_urls_from_config(self, config, simple_page, cdn_base):
        config.custom_urls = ["/media/catalog/product/shoe.jpg"]
        html = HtmlResponseProcessor(config).process_html(simple_page)
        assert cdn_base + "catalog/product/shoe.jpg" in html

    def test_body_only_set_when_changed(self, config, simple_page, make_body):
        response = make_body(simple_page)
        HtmlResponseProcessor(config).process(response)
        assert response.set_calls == 1
        assert response.body != simple_page

        config.enabled = False
        untouched = make_body(simple_page)
        HtmlResponseProcessor(config).process(untouched)
        assert untouched.set_calls == 0

    def test_empty_body(self, config, make_body):
        response = make_body("")
        HtmlResponseProcessor(config).process(response)
        assert response.set_calls == 0

    def test_performance_transforms_run(self, performance_config, simple_page):
        html = HtmlResponseProcessor(performance_config).process_html(simple_page)
        assert "Content-Security-Policy" in html

    def test_rewrite_failure_keeps_original_urls(self, config, simple_page, monkeypatch):
        monkeypatch.setattr(processor_module, "UrlRewriter", BrokenRewriter)
        assert HtmlResponseProcessor(config).process_html(simple_page) == simple_page

    def test_rewrite_failure_still_runs_transforms(
        self, performance_config, simple_page, monkeypatch
    ):
        monkeypatch.setattr(processor_module, "UrlRewriter", BrokenRewriter)
        html = HtmlResponseProcessor(performance_config).process_html(simple_page)
        assert "Content-Security-Policy" in html
        assert 'href="/static/frontend/Acme/theme/en_US/css/styles.css"' in html

    def test_injected_dimension_probe(self, performance_config, simple_page):
        performance_config.convert_to_webp = True
        performance_config.probe_image_dimensions = True
        performance_config.custom_urls = ["/media/catalog/product/shoe.jpg"]
        calls = []

        def probe(src):
            calls.append(src)
            return (100, 50)

        html = HtmlResponseProcessor(performance_config, dimension_probe=probe).process_html(
            simple_page
        )
        assert len(calls) == 1
        assert 'width="100" height="50"' in html
        assert "<picture>" in html

    def test_failing_size_lookup_keeps_other_rewrites(self, performance_config, simple_page):
        performance_config.convert_to_webp = True
        performance_config.probe_image_dimensions = True
        performance_config.custom_urls = ["/media/catalog/product/shoe.jpg"]

        def probe(src):
            raise OSError("decoder crashed")

        html = HtmlResponseProcessor(performance_config, dimension_probe=probe).process_html(
            simple_page
        )
        img = BeautifulSoup(html, "html.parser").picture.img
        assert not img.has_attr("width")
        assert "cdn.jsdelivr.net/gh/acme/store-assets@main/frontend/Acme/theme" in html

    def test_probe_unused_without_flag(self, performance_config, simple_page):
        performance_config.convert_to_webp = True
        performance_config.custom_urls = ["/media/catalog/product/shoe.jpg"]
        calls = []
        HtmlResponseProcessor(
            performance_config, dimension_probe=lambda src: calls.append(src)
        ).process_html(simple_page)
        assert calls == []


class TestNativeLazyLoading:
    def test_first_image_eager(self):
        html = (
            '<img src="a.jpg"><img src="b.jpg" />'
            '<img loading="eager" src="c.jpg"><img class="above-the-fold" src="d.jpg">'
        )
        assert add_native_lazy_loading(html) == (
            '<img src="a.jpg" loading="eager"><img src="b.jpg" loading="lazy" />'
            '<img loading="eager" src="c.jpg"><img class="above-the-fold" src="d.jpg">'
        )

    def test_applied_when_enabled(self, performance_config, simple_page):
        performance_config.lazy_load_images = True
        html = HtmlResponseProcessor(performance_config).process_html(simple_page)
        assert 'loading="eager"' in html
