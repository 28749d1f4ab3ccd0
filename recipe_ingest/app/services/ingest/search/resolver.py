import logging
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel

from recipe_ingest.app.core.config import get_settings
from recipe_ingest.app.services.ingest.search.base import SearchProvider
from recipe_ingest.app.services.ingest.search.brave import BraveSearchProvider
from recipe_ingest.app.services.ingest.search.google import GoogleCustomSearchProvider

logger = logging.getLogger(__name__)


class SearchProviderNotFoundError(Exception):
    def __init__(self, provider_id: str, reason: str = "not found"):
        super().__init__(f"Search provider '{provider_id}' {reason}")
        self.provider_id = provider_id
        self.reason = reason


class SearchProviderDescriptor(BaseModel):
    id: str
    display_name: str
    enabled: bool
    is_default: bool
    max_results_per_request: int
    rate_limit_per_minute: int = 0


class SearchProviderResolver:
    def __init__(self, providers: Iterable[SearchProvider], default_provider_id: Optional[str] = None):
        self._providers: Dict[str, SearchProvider] = {p.provider_id.lower(): p for p in providers}
        self.default_provider_id = (default_provider_id or get_settings().search_default_provider).lower()
        logger.debug(
            "Search resolver initialised with %d providers, default %s", len(self._providers), self.default_provider_id
        )

    @classmethod
    def from_settings(cls) -> "SearchProviderResolver":
        return cls([BraveSearchProvider.from_settings(), GoogleCustomSearchProvider.from_settings()])

    def resolve(self, provider_id: Optional[str] = None) -> SearchProvider:
        effective_id = (provider_id or "").strip().lower() or self.default_provider_id
        provider = self._providers.get(effective_id)
        if provider is None:
            logger.warning("Search provider '%s' not found", effective_id)
            raise SearchProviderNotFoundError(effective_id)
        if not provider.is_enabled:
            logger.warning("Search provider '%s' is disabled", effective_id)
            raise SearchProviderNotFoundError(effective_id, "is disabled")
        return provider

    def descriptors(self) -> List[SearchProviderDescriptor]:
        descriptors = [
            SearchProviderDescriptor(
                id=provider.provider_id,
                display_name=provider.display_name,
                enabled=provider.is_enabled,
                is_default=key == self.default_provider_id,
                max_results_per_request=provider.max_results,
                rate_limit_per_minute=provider.rate_limit_per_minute,
            )
            for key, provider in self._providers.items()
        ]
        # default first, then by name
        return sorted(descriptors, key=lambda d: (not d.is_default, d.display_name))

    def list_enabled(self) -> List[SearchProviderDescriptor]:
        return [d for d in self.descriptors() if d.enabled]


_resolver: Optional[SearchProviderResolver] = None


def get_search_resolver() -> SearchProviderResolver:
    global _resolver
    if _resolver is None:
        _resolver = SearchProviderResolver.from_settings()
    return _resolver
