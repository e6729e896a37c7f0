import json

import httpx
import pytest

from marham.core.errors import TransientFetchError


def test_get_decodes_json_and_text(make_fetcher):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api":
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(200, text="<html></html>", headers={"content-type": "text/html"})

    fetcher = make_fetcher(handler)
    assert fetcher.get("https://www.marham.pk/api").body == {"ok": True}
    assert fetcher.get("https://www.marham.pk/page").body == "<html></html>"


def test_body_is_posted_as_json_with_browser_headers(make_fetcher):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["body"] = request.read()
        seen["user_agent"] = request.headers["user-agent"]
        seen["referer"] = request.headers.get("referer")
        return httpx.Response(200, json={})

    fetcher = make_fetcher(handler)
    fetcher.get("https://www.marham.pk/api", headers={"Referer": "https://www.marham.pk/"}, body={"page": 2})
    assert seen["method"] == "POST"
    assert json.loads(seen["body"]) == {"page": 2}
    assert seen["user_agent"].startswith("Mozilla/5.0")
    assert seen["referer"] == "https://www.marham.pk/"


def test_retries_transient_status_then_succeeds(make_fetcher):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, text="ok")

    response = make_fetcher(handler).get("https://www.marham.pk/")
    assert response.status == 200
    assert len(calls) == 2


def test_exhausted_retries_raise_transient_error(make_fetcher):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientFetchError) as excinfo:
        make_fetcher(handler).get("https://www.marham.pk/")
    assert len(calls) == 2
    assert "transport error" in excinfo.value.reason


def test_client_errors_are_not_retried(make_fetcher):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404)

    with pytest.raises(TransientFetchError) as excinfo:
        make_fetcher(handler).get("https://www.marham.pk/missing")
    assert excinfo.value.status == 404
    assert len(calls) == 1


def test_undecodable_body_surfaces_as_transient_error(make_fetcher):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"not gzip", headers={"content-encoding": "gzip"})

    with pytest.raises(TransientFetchError) as excinfo:
        make_fetcher(handler).get("https://www.marham.pk/doctors/lahore/dermatologist/dr-ali")
    assert "request error" in excinfo.value.reason


def test_redirect_loop_surfaces_as_transient_error(make_fetcher):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.TooManyRedirects("Exceeded maximum allowed redirects.", request=request)

    with pytest.raises(TransientFetchError):
        make_fetcher(handler).get("https://www.marham.pk/loop")
