"""
Tests for base URL derivation and proxied URLs.
"""
from tunerhub.services.urls import base_url_from_headers, proxied_image_url, relay_route, request_protocol


def test_protocol_precedence():
    assert request_protocol({}, "http") == "http"
    assert request_protocol({"x-forwarded-proto": "https, http"}, "http") == "https"
    assert request_protocol({"x-url-scheme": "https"}, "http") == "https"
    assert request_protocol({"x-forwarded-ssl": "on"}, "http") == "https"


def test_base_url_from_host_headers():
    assert base_url_from_headers({"host": "box:34400"}, "http", "ignored") == "http://box:34400"
    assert base_url_from_headers(
        {"host": "internal", "x-forwarded-host": "tv.example.com", "x-forwarded-proto": "https"},
        "http",
        "internal",
    ) == "https://tv.example.com"


def test_public_base_url_wins():
    assert base_url_from_headers({"host": "box"}, "http", "box", "https://public.example/") == "https://public.example"


def test_relay_route_and_image_url():
    assert relay_route("A B", "x/y") == "/stream/A%20B/x%2Fy"
    assert proxied_image_url("http://p", "src", "http://i/a.png?s=1") == "http://p/images/src/http%3A%2F%2Fi%2Fa.png%3Fs%3D1"
    assert proxied_image_url("http://p", "src", "") == ""
    assert proxied_image_url("http://p", "", "http://i/a.png").startswith("http://p/images/unknown/")
