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

# Custom Search JSON API caps num at 10
GOOGLE_MAX_PER_REQUEST = 10


class GoogleCustomSearchProvider(SearchProvider):
    provider_id = "google"
    display_name = "Google Custom Search"

    def __init__(
        self,
        api_key: Optional[str],
        search_engine_id: Optional[str],
        language: str = "en",
        country: str = "us",
        safe_search: str = "medium",
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.search_engine_id = search_engine_id
        self.language = language
        self.country = country
        self.safe_search = safe_search

    @classmethod
    def from_settings(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "GoogleCustomSearchProvider":
        settings = get_settings()
        return cls(
            api_key=settings.google_api_key,
            search_engine_id=settings.google_search_engine_id,
            language=settings.google_language,
            country=settings.google_country,
            safe_search=settings.google_safe_search,
            endpoint=settings.google_endpoint,
            max_results=settings.google_max_results,
            timeout_seconds=settings.google_timeout_seconds,
            rate_limit_per_minute=settings.google_rate_limit_per_minute,
            allowed_domains=settings.google_allowed_domains,
            denied_domains=settings.google_denied_domains,
            enabled=settings.google_enabled,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.search_engine_id and self.endpoint)

    def build_params(self, request: SearchRequest) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "key": self.api_key,
            "cx": self.search_engine_id,
            "q": request.query,
            "num": min(request.max_results, self.max_results, GOOGLE_MAX_PER_REQUEST),
        }
        if self.language:
            params["lr"] = f"lang_{self.language}"
        if self.country:
            params["gl"] = self.country
        safe_search = request.safe_search or self.safe_search
        if safe_search:
            params["safe"] = "medium" if safe_search.lower() == "moderate" else safe_search
        return params

    def error_result(self, resp: httpx.Response) -> SearchResult:
        if resp.status_code == 429:
            logger.warning("Google Custom Search API rate limit hit")
            return SearchResult.rate_limited(self.provider_id)
        if resp.status_code == 403:
            body = resp.text.lower()
            if "quota" in body or "limit" in body:
                logger.warning("Google Custom Search API quota exceeded")
                return SearchResult.quota_exceeded(self.provider_id)
            logger.error("Google Custom Search API forbidden: %s", resp.text[:500])
            return SearchResult.failed("API access forbidden", "HTTP_403", self.provider_id)
        return self._http_error(resp)

    def total_results(self, data: Dict[str, Any]) -> Optional[int]:
        total = (data.get("searchInformation") or {}).get("totalResults")
        try:
            return int(total) if total is not None else None
        except (TypeError, ValueError):
            return None

    def map_candidates(self, data: Dict[str, Any]) -> List[SearchCandidate]:
        candidates = []
        for position, item in enumerate(data.get("items") or []):
            url = item.get("link") if isinstance(item, dict) else None
            if not url or not self.filter_candidate(url):
                continue
            candidates.append(
                SearchCandidate(
                    url=url,
                    title=item.get("title") or "",
                    snippet=item.get("snippet"),
                    site_name=item.get("displayLink") or site_name(url),
                    position=position,
                )
            )
        return candidates
