"""HTTP target fetcher used by the analysis modules."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import httpx

from config import settings

logger = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """Raised when the target page cannot be retrieved."""


@dataclass(frozen=True)
class FetchedPage:
    url: str
    final_url: str
    status_code: int
    headers: Dict[str, str]
    html: str
    elapsed_ms: float
    content_bytes: int
    tls_verified: Optional[bool] = None
    redirects: List[str] = field(default_factory=list)
    truncated: bool = False

    @property
    def is_https(self) -> bool:
        return urlparse(self.final_url).scheme == "https"

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


def _is_certificate_error(exc: Exception) -> bool:
    text = str(exc).lower()
    return "certificate" in text or "ssl" in text


class TargetFetcher:
    """Fetches rendered HTML plus basic network metadata for a URL."""

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        user_agent: Optional[str] = None,
        max_bytes: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_seconds = timeout_seconds or settings.FETCH_TIMEOUT_SECONDS
        self.user_agent = user_agent or settings.FETCH_USER_AGENT
        self.max_bytes = max_bytes or settings.FETCH_MAX_BYTES
        self.transport = transport

    async def fetch(self, url: str) -> FetchedPage:
        try:
            return await self._fetch(url, verify=True)
        except httpx.ConnectError as exc:
            if urlparse(url).scheme != "https" or not _is_certificate_error(exc):
                raise FetchError(f"Could not connect to {url}: {exc}") from exc
            logger.warning("Certificate verification failed for %s, retrying unverified: %s", url, exc)
            try:
                return await self._fetch(url, verify=False)
            except httpx.HTTPError as retry_exc:
                raise FetchError(f"Could not fetch {url}: {retry_exc}") from retry_exc
        except httpx.HTTPError as exc:
            raise FetchError(f"Could not fetch {url}: {exc}") from exc

    async def _fetch(self, url: str, verify: bool) -> FetchedPage:
        client_kwargs = {
            "timeout": self.timeout_seconds,
            "follow_redirects": True,
            "headers": {"User-Agent": self.user_agent},
            "verify": verify,
        }
        if self.transport is not None:
            client_kwargs["transport"] = self.transport

        started = time.perf_counter()
        async with httpx.AsyncClient(**client_kwargs) as client:
            async with client.stream("GET", url) as response:
                body, truncated = await self._read_capped(response)
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        encoding = response.encoding or "utf-8"
        html = body.decode(encoding, errors="replace")
        final_url = str(response.url)
        is_https = urlparse(final_url).scheme == "https"
        return FetchedPage(
            url=url,
            final_url=final_url,
            status_code=response.status_code,
            headers={key.lower(): value for key, value in response.headers.items()},
            html=html,
            elapsed_ms=round(elapsed_ms, 1),
            content_bytes=(_declared_length(response) or len(body)) if truncated else len(body),
            tls_verified=(verify if is_https else None),
            redirects=[str(item.url) for item in response.history],
            truncated=truncated,
        )

    async def _read_capped(self, response: httpx.Response) -> Tuple[bytes, bool]:
        """Read at most ``max_bytes`` of the body; the rest is never downloaded."""
        body = bytearray()
        async for chunk in response.aiter_bytes():
            body.extend(chunk)
            if len(body) > self.max_bytes:
                logger.info("Truncated %s at %s bytes", response.url, self.max_bytes)
                return bytes(body[: self.max_bytes]), True
        return bytes(body), False


def _declared_length(response: httpx.Response) -> Optional[int]:
    try:
        return int(response.headers.get("content-length", ""))
    except ValueError:
        return None
