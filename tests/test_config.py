"""
Tests for configuration parsing and derived flags.
"""
from cdn_rewriter.classifier import CRITICAL_FILES
from cdn_rewriter.config import (
    CACHE_APPLICATION_BUILT_IN,
    CACHE_APPLICATION_VARNISH,
    CdnConfig,
    MIN_PAGE_CACHE_TTL,
)


class TestCdnBaseUrl:
    """CDN root derived from the repository identity."""

    def test_complete_identity(self, config, cdn_base):
        assert config.cdn_base_url() == cdn_base

    def test_missing_repository_gives_empty_url(self):
        config = CdnConfig(enabled=True, github_username="acme")
        assert config.cdn_base_url() == ""
        assert not config.cdn_target()

    def test_blank_branch_defaults_to_main(self):
        config = CdnConfig(github_username="acme", github_repository="assets", github_branch="  ")
        assert config.github_branch == "main"
        assert config.cdn_base_url().endswith("@main/")


class TestFromMapping:
    """Flat scope-config values keyed by config path."""

    def test_parses_values(self):
        config = CdnConfig.from_mapping(
            {
                "cdn/general/enabled": "1",
                "cdn/general/debug_mode": "0",
                "cdn/github/username": " acme ",
                "cdn/github/repository": "store-assets",
                "cdn/github/branch": "release",
                "cdn/settings/file_types": "CSS, js, .svg",
                "cdn/settings/excluded_paths": "/static/skip/\r\n\n/media/private/",
                "cdn/custom_urls/url_list": "/static/a.css\n/static/b.js\n",
                "cdn/performance/enabled": "true",
                "cdn/performance/lazy_load_images": "1",
                "cdn/performance/page_cache_ttl": "120",
                "web/unsecure/base_url": "http://shop.example.com/",
            }
        )
        assert config.enabled is True
        assert config.debug_mode is False
        assert config.github_username == "acme"
        assert config.github_branch == "release"
        assert config.file_types == ["css", "js", "svg"]
        assert config.excluded_paths == ["/static/skip/", "/media/private/"]
        assert config.custom_urls == ["/static/a.css", "/static/b.js"]
        assert config.lazy_loading_enabled is True
        assert config.webp_enabled is False
        assert config.base_url == "http://shop.example.com"
        assert config.page_cache_ttl == 120

    def test_empty_mapping_uses_defaults(self):
        config = CdnConfig.from_mapping({})
        assert config.enabled is False
        assert config.file_types == ["css", "js"]
        assert config.custom_urls == []
        assert config.page_cache_ttl == 0


class TestDerivedSets:
    def test_safe_extensions_include_configured_types(self):
        config = CdnConfig(file_types=["map"])
        assert "map" in config.safe_extensions()
        assert "woff2" in config.safe_extensions()

    def test_excluded_substrings_start_with_critical_files(self):
        config = CdnConfig(excluded_paths=["/static/skip/"])
        excluded = config.excluded_substrings()
        assert excluded[: len(CRITICAL_FILES)] == tuple(CRITICAL_FILES)
        assert excluded[-1] == "/static/skip/"


class TestPerformanceFlags:
    """Optional stages need both the module and the performance group enabled."""

    def test_flag_requires_performance_group(self, config):
        config.optimize_images = True
        assert config.image_optimization_enabled is False
        config.performance_enabled = True
        assert config.image_optimization_enabled is True

    def test_flag_requires_module_enabled(self, performance_config):
        performance_config.optimize_javascript = True
        performance_config.enabled = False
        assert performance_config.js_optimization_enabled is False

    def test_dimension_probe_requires_webp(self, performance_config):
        performance_config.probe_image_dimensions = True
        assert performance_config.dimension_probe_enabled is False
        performance_config.convert_to_webp = True
        assert performance_config.dimension_probe_enabled is True


class TestPageCache:
    def test_ttl_is_clamped_to_one_hour(self):
        assert CdnConfig(page_cache_ttl=0).effective_page_cache_ttl() == MIN_PAGE_CACHE_TTL
        assert CdnConfig(page_cache_ttl=60).effective_page_cache_ttl() == 3600
        assert CdnConfig(page_cache_ttl=7200).effective_page_cache_ttl() == 7200
        assert CdnConfig(page_cache_ttl=999999).effective_page_cache_ttl() == 999999

    def test_settings_disabled_without_flag(self, performance_config):
        assert performance_config.page_cache_settings() is None

    def test_built_in_cache(self, performance_config):
        performance_config.enhance_full_page_cache = True
        settings = performance_config.page_cache_settings()
        assert settings.caching_application == CACHE_APPLICATION_BUILT_IN
        assert settings.ttl == 3600

    def test_varnish_cache(self, performance_config):
        performance_config.enhance_full_page_cache = True
        performance_config.use_varnish = True
        performance_config.page_cache_ttl = 86400
        settings = performance_config.page_cache_settings()
        assert settings.caching_application == CACHE_APPLICATION_VARNISH
        assert settings.ttl == 86400
