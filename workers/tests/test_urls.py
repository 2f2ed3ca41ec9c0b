import pytest

from app.core.urls import is_http_url, normalize_url, screenshot_key


def test_normalize_url_strips_tracking_and_default_port() -> None:
    normalized = normalize_url("https://Example.com:443/offer/?utm_source=sms&b=2&a=1&fbclid=x")
    assert normalized == "https://example.com/offer?a=1&b=2"


def test_normalize_url_rejects_relative_urls() -> None:
    with pytest.raises(ValueError):
        normalize_url("/just/a/path")


def test_screenshot_key_is_shared_by_equivalent_urls() -> None:
    first = screenshot_key("https://example.com/offer?utm_campaign=x")
    second = screenshot_key("HTTPS://EXAMPLE.COM/offer/")

    assert first == second
    assert first.startswith("scans/") and first.endswith(".png")


def test_is_http_url() -> None:
    assert is_http_url("http://example.com")
    assert not is_http_url("javascript:alert(1)")
    assert not is_http_url("example.com")
