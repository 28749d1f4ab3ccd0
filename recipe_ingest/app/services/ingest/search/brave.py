import logging
from typing import Any, Dict, List, Optional

import httpx

from recipe_ingest.app.core.config import get_settings
from recipe_ingest.app.services.ingest.search.base import (
    SearchCandidate,
    SearchProvider,
    SearchRequest,
    SearchResult,
    site_name,
)

logger = logging.getLogger(__name__)


class BraveSearchProvider(SearchProvider):
    provider_id = "brave"
    display_name = "Brave Search"

    def __init__(
        self,
        api_key: Optional[str],
        market: str = "en-US",
        safe_search: str = "moderate",
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.market = market
        self.safe_search = safe_search

    @classmethod
    def from_settings(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "BraveSearchProvider":
        settings = get_settings()
        return cls(
            api_key=settings.brave_api_key,
            market=settings.brave_market,
            safe_search=settings.brave_safe_search,
            endpoint=settings.brave_endpoint,
            max_results=settings.brave_max_results,
            timeout_seconds=settings.brave_timeout_seconds,
            rate_limit_per_minute=settings.brave_rate_limit_per_minute,
            allowed_domains=settings.brave_allowed_domains,
            denied_domains=settings.brave_denied_domains,
            enabled=settings.brave_enabled,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.endpoint)

    def build_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "X-Subscription-Token": self.api_key or ""}

    def build_params(self, request: SearchRequest) -> Dict[str, Any]:
        params: Dict[str, Any] = {"q": request.query, "count": min(request.max_results, self.max_results)}
        market = request.market or self.market
        if market:
            # "en-US" -> "US"
            params["country"] = market.split("-")[-1] or "US"
        safe_search = request.safe_search or self.safe_search
        if safe_search:
            params["safesearch"] = safe_search
        return params

    def error_result(self, resp: httpx.Response) -> SearchResult:
        if resp.status_code == 429:
            logger.warning("Brave Search API rate limit hit")
            return SearchResult.rate_limited(self.provider_id)
        if resp.status_code == 402:
            logger.warning("Brave Search API quota exceeded")
            return SearchResult.quota_exceeded(self.provider_id)
        return self._http_error(resp)

    def total_results(self, data: Dict[str, Any]) -> Optional[int]:
        total = (data.get("query") or {}).get("total_count")
        return total if isinstance(total, int) else None

    def map_candidates(self, data: Dict[str, Any]) -> List[SearchCandidate]:
        results = (data.get("web") or {}).get("results") or []
        candidates = []
        for position, item in enumerate(results):
            url = item.get("url") if isinstance(item, dict) else None
            if not url or not self.filter_candidate(url):
                continue
            candidates.append(
                SearchCandidate(
                    url=url,
                    title=item.get("title") or "",
                    snippet=item.get("description"),
                    site_name=site_name(url),
                    position=position,
                )
            )
        return candidates
