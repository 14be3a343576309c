"""GitHub Releases client with retry and failure classification.

:class:`ReleaseClient` wraps :class:`httpx.Client` for the handful of
release endpoints the publisher needs. Server errors (5xx), rate limiting
and network errors are retried with exponential backoff (1 s, 2 s, 4 s,
...). Every other error status is final:

- 401 / 403 (except rate limiting) -> :attr:`PublishFailureKind.PERMISSION`
- 404 on a lookup -> ``None``
- other 4xx -> :attr:`PublishFailureKind.PERMISSION`

Must be used as a context manager so the transport is opened and closed.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

import httpx

from plugship import __version__
from plugship.exceptions import PublishFailure, PublishFailureKind
from plugship.output import debug


class ReleaseClient:
    """Minimal GitHub Releases API client.

    Args:
        repository: ``owner/name`` of the repository receiving the release.
        token: API token sent as a bearer credential.
        api_url: REST API root (``https://api.github.com`` by default).
        timeout: Per-request timeout in seconds.
        max_retries: Retries after the first attempt for transient errors.
        transport: Optional :mod:`httpx` transport (tests use
            :class:`httpx.MockTransport`).

    Example::

        with ReleaseClient("acme/tool", token) as client:
            release = client.create_release("v1.2.0", draft=True)
    """

    def __init__(
        self,
        repository: str,
        token: str,
        api_url: str = "https://api.github.com",
        timeout: float = 30,
        max_retries: int = 3,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.max_retries = max_retries
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    def __enter__(self) -> ReleaseClient:
        self._client = httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self._token}",
                "User-Agent": f"plugship/{__version__}",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    # ------------------------------------------------------------------ #
    # Releases
    # ------------------------------------------------------------------ #

    def _repo_url(self, suffix: str) -> str:
        return f"{self.api_url}/repos/{self.repository}{suffix}"

    def get_release_by_tag(self, tag: str) -> Optional[dict[str, Any]]:
        """Return the release for *tag* (draft releases excluded), or ``None``."""
        url = self._repo_url(f"/releases/tags/{quote(tag, safe='')}")
        response = self._request("GET", url, allow_404=True)
        return None if response is None else response.json()

    def create_release(
        self,
        tag: str,
        draft: bool = True,
        generate_notes: bool = False,
        body: Optional[str] = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "tag_name": tag,
            "name": tag,
            "draft": draft,
            "generate_release_notes": generate_notes,
        }
        if body:
            payload["body"] = body
        response = self._request("POST", self._repo_url("/releases"), json=payload)
        assert response is not None
        return response.json()

    def update_release(self, release_id: int, **fields: Any) -> dict[str, Any]:
        response = self._request("PATCH", self._repo_url(f"/releases/{release_id}"), json=fields)
        assert response is not None
        return response.json()

    def delete_release(self, release_id: int) -> None:
        """Delete a release. A release that is already gone counts as deleted."""
        self._request("DELETE", self._repo_url(f"/releases/{release_id}"), allow_404=True)

    def upload_asset(self, release: dict[str, Any], path: Path) -> dict[str, Any]:
        """Upload *path* as a release asset named after the file.

        ``upload_url`` arrives as a URI template (``...assets{?name,label}``);
        the template part is dropped and ``name`` passed as a query parameter.
        """
        upload_url = release["upload_url"].split("{", 1)[0]
        response = self._request(
            "POST",
            upload_url,
            params={"name": path.name},
            content=path.read_bytes(),
            headers={"Content-Type": "application/octet-stream"},
        )
        assert response is not None
        return response.json()

    # ------------------------------------------------------------------ #
    # Transport
    # ------------------------------------------------------------------ #

    def _request(
        self,
        method: str,
        url: str,
        allow_404: bool = False,
        **kwargs: Any,
    ) -> Optional[httpx.Response]:
        """Send a request with exponential-backoff retry.

        Returns ``None`` for a 404 when *allow_404* is set.

        Raises:
            PublishFailure: Once retries are exhausted or on a final error.
        """
        assert self._client is not None, "Client not initialised -- use as context manager"

        for attempt in range(self.max_retries + 1):
            retry_left = attempt < self.max_retries
            try:
                response = self._client.request(method, url, **kwargs)
            except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
                if retry_left:
                    delay = 2 ** attempt
                    debug(
                        f"Connection error: {exc}, retrying in {delay}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(delay)
                    continue
                raise PublishFailure(
                    f"{method} {url} failed after {self.max_retries + 1} attempts: {exc}"
                ) from exc

            if response.status_code < 400:
                return response
            if response.status_code == 404 and allow_404:
                return None

            kind = _classify(response)
            if kind == PublishFailureKind.TRANSIENT and retry_left:
                delay = 2 ** attempt
                debug(
                    f"HTTP {response.status_code} from {method} {url}, retrying in {delay}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                time.sleep(delay)
                continue
            raise PublishFailure(f"{method} {url}: {_error_message(response)}", kind=kind)

        raise PublishFailure(f"{method} {url} failed after all retries")  # pragma: no cover


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    return response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"


def _classify(response: httpx.Response) -> PublishFailureKind:
    if response.status_code >= 500 or _is_rate_limited(response):
        return PublishFailureKind.TRANSIENT
    return PublishFailureKind.PERMISSION


def _error_message(response: httpx.Response) -> str:
    prefix = f"HTTP {response.status_code}"
    try:
        detail = response.json()
    except ValueError:
        text = response.text[:200]
        return f"{prefix}: {text}" if text else prefix
    if isinstance(detail, dict):
        msg = detail.get("message") or detail.get("error") or ""
    else:
        msg = str(detail)
    return f"{prefix}: {msg}" if msg else prefix
