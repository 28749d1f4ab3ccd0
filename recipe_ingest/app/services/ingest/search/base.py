"""Search provider contract, result models, rate limiting and domain filtering."""

import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class SearchCandidate(BaseModel):
    url: str
    title: str = ""
    snippet: Optional[str] = None
    site_name: Optional[str] = None
    score: Optional[float] = None
    position: int = 0


class SearchRequest(BaseModel):
    query: str
    max_results: int = 10
    market: Optional[str] = None
    safe_search: Optional[str] = None


class SearchResult(BaseModel):
    success: bool
    candidates: List[SearchCandidate] = Field(default_factory=list)
    total_results: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    provider_id: Optional[str] = None
    executed_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def succeeded(
        cls, candidates: List[SearchCandidate], provider_id: str, total_results: Optional[int] = None
    ) -> "SearchResult":
        return cls(
            success=True,
            candidates=candidates,
            provider_id=provider_id,
            total_results=total_results if total_results is not None else len(candidates),
        )

    @classmethod
    def failed(cls, error: str, error_code: str, provider_id: Optional[str] = None) -> "SearchResult":
        return cls(success=False, error=error, error_code=error_code, provider_id=provider_id)

    @classmethod
    def rate_limited(cls, provider_id: str) -> "SearchResult":
        return cls.failed(f"Rate limit exceeded for provider: {provider_id}", "RATE_LIMITED", provider_id)

    @classmethod
    def quota_exceeded(cls, provider_id: str) -> "SearchResult":
        return cls.failed(f"Quota exceeded for provider: {provider_id}", "QUOTA_EXCEEDED", provider_id)


class RateLimiter:
    """Token bucket refilled to ``per_minute`` tokens every minute. Never waits."""

    def __init__(self, per_minute: int, clock=time.monotonic):
        self.capacity = per_minute
        self._clock = clock
        self._tokens = float(per_minute)
        self._last = clock()
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        with self._lock:
            now = self._clock()
            elapsed = now - self._last
            self._last = now
            self._tokens = min(self.capacity, self._tokens + elapsed * self.capacity / 60.0)
            if self._tokens < 1:
                return False
            self._tokens -= 1
            return True


def site_name(url: str) -> Optional[str]:
    host = urlparse(url).hostname
    if not host:
        return None
    return host[4:] if host.lower().startswith("www.") else host


def _host_matches(host: str, domain: str) -> bool:
    domain = domain.lower().lstrip(".")
    return host == domain or host.endswith("." + domain)


def is_domain_allowed(url: str, allowed: Sequence[str] = (), denied: Sequence[str] = ()) -> bool:
    """Deny list wins; a non-empty allow list must then match. Both match the domain itself or any subdomain of it."""
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        return False
    host = parsed.hostname.lower()
    if any(_host_matches(host, domain) for domain in denied if domain):
        return False
    allowed = [domain for domain in allowed if domain]
    if allowed:
        return any(_host_matches(host, domain) for domain in allowed)
    return True


class SearchProvider(ABC):
    """Base for HTTP search providers.

    ``search`` handles the shared checks and error mapping; subclasses build
    the request parameters and map the response body to candidates.
    """

    provider_id: str = ""
    display_name: str = ""

    def __init__(
        self,
        endpoint: str,
        max_results: int,
        timeout_seconds: float,
        rate_limit_per_minute: int = 0,
        allowed_domains: Sequence[str] = (),
        denied_domains: Sequence[str] = (),
        enabled: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint
        self.max_results = max_results
        self.timeout_seconds = timeout_seconds
        self.allowed_domains = list(allowed_domains)
        self.denied_domains = list(denied_domains)
        self.enabled = enabled
        self.rate_limit_per_minute = rate_limit_per_minute
        self._transport = transport
        self._rate_limiter = RateLimiter(rate_limit_per_minute) if rate_limit_per_minute > 0 else None

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @property
    def is_enabled(self) -> bool:
        return self.enabled and self.is_configured

    @abstractmethod
    def build_params(self, request: SearchRequest) -> Dict[str, Any]:
        ...

    def build_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    @abstractmethod
    def error_result(self, resp: httpx.Response) -> SearchResult:
        ...

    @abstractmethod
    def map_candidates(self, data: Dict[str, Any]) -> List[SearchCandidate]:
        ...

    def total_results(self, data: Dict[str, Any]) -> Optional[int]:
        return None

    def filter_candidate(self, url: str) -> bool:
        allowed = is_domain_allowed(url, self.allowed_domains, self.denied_domains)
        if not allowed:
            logger.debug("Filtered out search result from denied domain: %s", url)
        return allowed

    def _client(self) -> httpx.AsyncClient:
        kwargs: Dict[str, Any] = {"timeout": httpx.Timeout(self.timeout_seconds), "headers": self.build_headers()}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def search(self, request: SearchRequest) -> SearchResult:
        if not self.is_enabled:
            logger.warning("%s provider is not enabled or not properly configured", self.display_name)
            return SearchResult.failed("Provider is not enabled", "PROVIDER_DISABLED", self.provider_id)
        if not request.query or not request.query.strip():
            return SearchResult.failed("Query cannot be empty", "INVALID_QUERY", self.provider_id)
        if self._rate_limiter is not None and not self._rate_limiter.try_acquire():
            logger.warning("Rate limit exceeded for %s provider", self.display_name)
            return SearchResult.rate_limited(self.provider_id)

        logger.debug("Executing %s: %s", self.display_name, request.query)
        try:
            async with self._client() as client:
                resp = await client.get(self.endpoint, params=self.build_params(request))
            if resp.status_code >= 400:
                return self.error_result(resp)
            data = resp.json()
        except httpx.TimeoutException:
            logger.warning("%s request timed out for query: %s", self.display_name, request.query)
            return SearchResult.failed("Request timed out", "TIMEOUT", self.provider_id)
        except httpx.HTTPError as exc:
            logger.error("HTTP error during %s for query %s: %s", self.display_name, request.query, exc)
            return SearchResult.failed(f"HTTP error: {exc}", "HTTP_ERROR", self.provider_id)
        except ValueError as exc:
            logger.error("JSON parsing error during %s for query %s: %s", self.display_name, request.query, exc)
            return SearchResult.failed(f"Parse error: {exc}", "PARSE_ERROR", self.provider_id)

        if not isinstance(data, dict):
            return SearchResult.failed("Failed to parse API response", "PARSE_ERROR", self.provider_id)
        candidates = self.map_candidates(data)
        logger.info("%s returned %d results for query: %s", self.display_name, len(candidates), request.query)
        return SearchResult.succeeded(candidates, self.provider_id, self.total_results(data))

    def _http_error(self, resp: httpx.Response) -> SearchResult:
        logger.error("%s API error: %s - %s", self.display_name, resp.status_code, resp.text[:500])
        return SearchResult.failed(
            f"API returned status {resp.status_code}", f"HTTP_{resp.status_code}", self.provider_id
        )
