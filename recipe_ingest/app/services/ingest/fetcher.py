"""Hardened HTTP fetcher: URL validation, SSRF screening, circuit breaking, bounded reads and retries."""

import logging
from datetime import datetime
from typing import Optional
from urllib.parse import urljoin, urlparse
from urllib.robotparser import RobotFileParser

import httpx
from pydantic import BaseModel

from recipe_ingest.app.core.config import get_settings
from recipe_ingest.app.services.ingest.cancellation import CancellationToken
from recipe_ingest.app.services.ingest.circuit_breaker import CircuitBreaker, get_circuit_breaker
from recipe_ingest.app.services.ingest.ssrf import SsrfGuard, validate_url

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 5
_REDIRECT_CODES = {301, 302, 303, 307, 308}


class FetchResult(BaseModel):
    success: bool
    content: Optional[str] = None
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    content_length: int = 0
    final_url: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retrieved_at: datetime
    was_blocked_by_ssrf: bool = False
    was_blocked_by_circuit_breaker: bool = False
    retry_count: int = 0

    @classmethod
    def failed(cls, error: str, error_code: str, status_code: Optional[int] = None, **kwargs) -> "FetchResult":
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            status_code=status_code,
            retrieved_at=datetime.utcnow(),
            **kwargs,
        )


class _TooLarge(Exception):
    pass


def _decode(content_bytes: bytes, content_type: str) -> str:
    encoding = None
    if "charset=" in content_type.lower():
        try:
            encoding = content_type.lower().split("charset=")[1].split(";")[0].strip().strip("\"'")
        except (IndexError, AttributeError):
            pass
    try:
        return content_bytes.decode(encoding or "utf-8")
    except (UnicodeDecodeError, LookupError):
        return content_bytes.decode("utf-8", errors="replace")


def parse_robots_txt(robots_txt: str, user_agent: str, path: str) -> bool:
    """Return True when ``path`` may be fetched by ``user_agent`` under ``robots_txt``."""
    rp = RobotFileParser()
    rp.parse(robots_txt.splitlines())
    return rp.can_fetch(user_agent, path)


class Fetcher:
    def __init__(
        self,
        breaker: Optional[CircuitBreaker] = None,
        ssrf_guard: Optional[SsrfGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_bytes: Optional[int] = None,
        max_retries: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        respect_robots_txt: Optional[bool] = None,
        user_agent: Optional[str] = None,
    ):
        settings = get_settings()
        self.breaker = breaker or get_circuit_breaker()
        self.ssrf_guard = ssrf_guard or SsrfGuard()
        self._transport = transport
        self.max_bytes = max_bytes if max_bytes is not None else settings.ingest_max_fetch_size_bytes
        self.max_retries = max_retries if max_retries is not None else settings.ingest_max_fetch_retries
        self.timeout_seconds = timeout_seconds or settings.ingest_fetch_timeout_seconds
        self.respect_robots_txt = (
            respect_robots_txt if respect_robots_txt is not None else settings.ingest_respect_robots_txt
        )
        self.user_agent = user_agent or settings.ingest_user_agent

    def _client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self.timeout_seconds, connect=min(10.0, self.timeout_seconds))
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
        kwargs = {"timeout": timeout, "headers": headers, "follow_redirects": False}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def fetch(self, url: str, cancel: Optional[CancellationToken] = None) -> FetchResult:
        cancel = cancel or CancellationToken()
        validation = validate_url(url)
        if not validation.ok:
            logger.info("Rejected URL %s: %s", url, validation.error_code)
            return FetchResult.failed(validation.error_message or "Invalid URL", validation.error_code or "INVALID_URL")

        url = url.strip()
        host = urlparse(url).hostname or ""
        if self.breaker.is_open(host):
            logger.warning("Circuit open for %s; skipping fetch of %s", host, url)
            return FetchResult.failed(
                f"Circuit breaker open for {host}", "CIRCUIT_BREAKER_OPEN", was_blocked_by_circuit_breaker=True
            )

        allowed, reason = await self.ssrf_guard.check(url)
        if not allowed:
            self.breaker.record_failure(host)
            return FetchResult.failed(reason or "Blocked by network policy", "SSRF_BLOCKED", was_blocked_by_ssrf=True)

        async with self._client() as client:
            if self.respect_robots_txt and not await self._robots_allows(client, url):
                logger.info("Fetch of %s blocked by robots.txt", url)
                return FetchResult.failed("Blocked by robots.txt", "ROBOTS_TXT_BLOCKED")
            return await self._fetch_with_retry(client, url, host, cancel)

    async def _robots_allows(self, client: httpx.AsyncClient, url: str) -> bool:
        parsed = urlparse(url)
        robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"
        try:
            resp = await client.get(robots_url)
        except httpx.HTTPError as exc:
            logger.debug("robots.txt fetch failed for %s: %s", robots_url, exc)
            return True
        if resp.status_code >= 400:
            return True
        return parse_robots_txt(resp.text, self.user_agent, parsed.path or "/")

    async def _fetch_with_retry(
        self, client: httpx.AsyncClient, url: str, host: str, cancel: CancellationToken
    ) -> FetchResult:
        retry_count = 0
        last_error: Optional[str] = None
        while retry_count <= self.max_retries:
            if retry_count > 0:
                delay = 2 ** (retry_count - 1)
                logger.info("Retry %s/%s for %s after %ss", retry_count, self.max_retries, url, delay)
                await cancel.sleep(delay)
            cancel.raise_if_cancelled()
            try:
                result = await self._perform_fetch(client, url, cancel)
                result.retry_count = retry_count
                if result.success:
                    self.breaker.record_success(host)
                    return result
                if result.error_code in {"CONTENT_TOO_LARGE", "SSRF_BLOCKED", "INVALID_URL"}:
                    return result
                self.breaker.record_failure(host)
                if result.status_code is not None and 400 <= result.status_code < 500:
                    return result
                last_error = result.error
            except httpx.TimeoutException as exc:
                logger.warning("Timeout fetching %s: %s", url, exc)
                self.breaker.record_failure(host)
                last_error = f"Request timed out: {exc}"
            except httpx.HTTPError as exc:
                logger.warning("HTTP error fetching %s: %s", url, exc)
                self.breaker.record_failure(host)
                last_error = str(exc)
            retry_count += 1

        return FetchResult.failed(
            f"Failed after {self.max_retries} retries: {last_error}",
            "MAX_RETRIES_EXCEEDED",
            retry_count=retry_count - 1,
        )

    async def _perform_fetch(self, client: httpx.AsyncClient, url: str, cancel: CancellationToken) -> FetchResult:
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            async with client.stream("GET", current) as resp:
                if resp.status_code in _REDIRECT_CODES and resp.headers.get("location"):
                    target = urljoin(current, resp.headers["location"])
                    if not validate_url(target).ok:
                        return FetchResult.failed(f"Redirect to disallowed URL {target}", "INVALID_URL")
                    allowed, reason = await self.ssrf_guard.check(target)
                    if not allowed:
                        return FetchResult.failed(reason or "Redirect blocked", "SSRF_BLOCKED", was_blocked_by_ssrf=True)
                    current = target
                    continue

                content_type = resp.headers.get("content-type", "")
                if resp.status_code >= 400:
                    return FetchResult.failed(
                        f"HTTP {resp.status_code}: {resp.reason_phrase}",
                        f"HTTP_{resp.status_code}",
                        status_code=resp.status_code,
                        content_type=content_type,
                        final_url=str(resp.url),
                    )

                declared = resp.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    return self._too_large(f"{declared} bytes exceeds limit of {self.max_bytes} bytes", resp.status_code)

                try:
                    body = await self._read_bounded(resp, cancel)
                except _TooLarge:
                    return self._too_large(
                        f"content exceeded limit of {self.max_bytes} bytes while reading", resp.status_code
                    )

                text = _decode(body, content_type)
                logger.info("Fetched %s: %s bytes", current, len(body))
                return FetchResult(
                    success=True,
                    content=text,
                    status_code=resp.status_code,
                    content_type=content_type.split(";")[0].strip() or None,
                    content_length=len(body),
                    final_url=str(resp.url),
                    retrieved_at=datetime.utcnow(),
                )
        raise httpx.TooManyRedirects(f"Exceeded {MAX_REDIRECTS} redirects for {url}")

    async def _read_bounded(self, resp: httpx.Response, cancel: CancellationToken) -> bytes:
        chunks = []
        total = 0
        async for chunk in resp.aiter_bytes():
            cancel.raise_if_cancelled()
            total += len(chunk)
            if total > self.max_bytes:
                raise _TooLarge()
            chunks.append(chunk)
        return b"".join(chunks)

    def _too_large(self, detail: str, status_code: int) -> FetchResult:
        logger.warning("Content too large: %s", detail)
        return FetchResult.failed(f"Content too large: {detail}", "CONTENT_TOO_LARGE", status_code=status_code)
