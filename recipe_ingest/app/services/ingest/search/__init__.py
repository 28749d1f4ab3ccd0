from recipe_ingest.app.services.ingest.search.base import SearchCandidate, SearchProvider, SearchRequest, SearchResult
from recipe_ingest.app.services.ingest.search.resolver import (
    SearchProviderNotFoundError,
    SearchProviderResolver,
    get_search_resolver,
)

__all__ = [
    "SearchCandidate",
    "SearchProvider",
    "SearchProviderNotFoundError",
    "SearchProviderResolver",
    "SearchRequest",
    "SearchResult",
    "get_search_resolver",
]
