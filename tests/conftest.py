"""
Pytest fixtures for the CDN rewriter tests.
"""
import pytest
import requests

from cdn_rewriter.config import CdnConfig

CDN = "https://cdn.jsdelivr.net/gh/acme/store-assets@main/"


@pytest.fixture
def cdn_base():
    """CDN root for the acme/store-assets repository."""
    return CDN


@pytest.fixture
def config():
    """Enabled config with a complete repository identity."""
    return CdnConfig(
        enabled=True,
        github_username="acme",
        github_repository="store-assets",
        github_branch="main",
        base_url="https://shop.example.com/",
        secure_base_url="https://shop.example.com/",
    )


@pytest.fixture
def performance_config(config):
    """Config with the performance group switched on but no optional stage."""
    config.performance_enabled = True
    return config


@pytest.fixture
def simple_page():
    """Minimal storefront page with one stylesheet, one script and one image."""
    return (
        "<html><head>"
        '<link rel="stylesheet" href="/static/frontend/Acme/theme/en_US/css/styles.css">'
        "</head><body>"
        '<script src="/static/frontend/Acme/theme/en_US/js/app.js"></script>'
        '<img src="/media/catalog/product/shoe.jpg" alt="Shoe">'
        "</body></html>"
    )


class FakeResponse:
    """Stand-in for ``requests.Response`` with the attributes the code reads."""

    def __init__(self, text="", content=b"", status=200):
        self.text = text
        self.content = content
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeSession:
    """Records every GET and answers from a URL -> response mapping."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        response = self.responses.get(url)
        if response is None:
            raise requests.ConnectionError(f"no route to {url}")
        return response


@pytest.fixture
def fake_session():
    return FakeSession()


class BodyHolder:
    """Minimal response object exposing get_body/set_body."""

    def __init__(self, body):
        self.body = body
        self.set_calls = 0

    def get_body(self):
        return self.body

    def set_body(self, body):
        self.set_calls += 1
        self.body = body


@pytest.fixture
def make_response():
    return FakeResponse


@pytest.fixture
def make_body():
    return BodyHolder
