import logging
import time
from typing import Any, Mapping, Optional

import httpx

from marham.core.config import Settings
from marham.core.errors import TransientFetchError

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)
RETRY_STATUSES = {408, 425, 429, 500, 502, 503, 504}


def browser_headers(referer: Optional[str] = None) -> dict[str, str]:
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,application/json;q=0.8,*/*;q=0.7",
        "Accept-Language": "en-US,en;q=0.9",
    }
    if referer:
        headers["Referer"] = referer
    return headers


class FetchResponse:
    def __init__(self, status: int, body: Any, url: str) -> None:
        self.status = status
        self.body = body
        self.url = url


class Fetcher:
    """HTTP collaborator: timeout, proxy routing and retry with exponential backoff.

    Any failure that survives the retries surfaces as ``TransientFetchError``.
    """

    def __init__(
        self,
        settings: Settings,
        proxy_url: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.timeout = settings.request_timeout_seconds
        self.max_retries = max(settings.max_retries, 0)
        self.backoff = max(settings.retry_backoff_seconds, 0)
        self.proxy_url = proxy_url
        self._client = client

    def _client_or_default(self) -> httpx.Client:
        if self._client:
            return self._client
        self._client = httpx.Client(
            headers=browser_headers(),
            timeout=self.timeout,
            proxy=self.proxy_url,
            follow_redirects=True,
        )
        return self._client

    def close(self) -> None:
        if self._client:
            self._client.close()

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if "json" in response.headers.get("content-type", ""):
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    def _sleep(self, attempt: int) -> None:
        if self.backoff:
            time.sleep(self.backoff * (2**attempt))

    def get(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[Mapping[str, Any]] = None,
    ) -> FetchResponse:
        """GET ``url``, or POST ``body`` as JSON when one is given."""
        request_headers = {**browser_headers(), **(headers or {})}
        client = self._client_or_default()
        reason = "no attempt made"
        status: Optional[int] = None
        for attempt in range(self.max_retries + 1):
            try:
                if body is None:
                    response = client.get(url, headers=request_headers, timeout=self.timeout)
                else:
                    response = client.post(url, json=dict(body), headers=request_headers, timeout=self.timeout)
            except httpx.TimeoutException as exc:
                reason, status = f"timeout: {exc}", None
            except httpx.TransportError as exc:
                reason, status = f"transport error: {exc}", None
            except httpx.RequestError as exc:
                # undecodable bodies and redirect loops
                reason, status = f"request error: {exc}", None
            else:
                status = response.status_code
                if response.is_success:
                    return FetchResponse(status, self._decode(response), str(response.url))
                reason = f"HTTP {status}"
                if status not in RETRY_STATUSES:
                    break
            if attempt < self.max_retries:
                logger.warning("Fetch %s failed (%s), retry %s/%s", url, reason, attempt + 1, self.max_retries)
                self._sleep(attempt)
        raise TransientFetchError(url, reason, status)
