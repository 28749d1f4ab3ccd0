import httpx
import pytest

from recipe_ingest.app.services.ingest.search import SearchProviderNotFoundError, SearchProviderResolver, SearchRequest
from recipe_ingest.app.services.ingest.search.base import RateLimiter, is_domain_allowed
from recipe_ingest.app.services.ingest.search.brave import BraveSearchProvider
from recipe_ingest.app.services.ingest.search.google import GoogleCustomSearchProvider

BRAVE_BODY = {
    "query": {"total_count": 1200},
    "web": {
        "results": [
            {"url": "https://www.bonappetit.com/recipe/soup", "title": "Soup", "description": "Warm."},
            {"url": "https://pinterest.com/pin/1", "title": "Pin"},
            {"url": "https://cooking.example.com/soup", "title": "Other soup"},
        ]
    },
}

GOOGLE_BODY = {
    "searchInformation": {"totalResults": "5400"},
    "items": [
        {"link": "https://food.example.org/stew", "title": "Stew", "snippet": "Hearty.", "displayLink": "food.example.org"},
        {"link": "ftp://files.example.org/stew", "title": "FTP"},
    ],
}


def brave(handler, **kwargs):
    kwargs.setdefault("denied_domains", ["pinterest.com"])
    return BraveSearchProvider(
        api_key="brave-key",
        endpoint="https://api.search.brave.com/res/v1/web/search",
        max_results=10,
        timeout_seconds=5,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def google(handler, **kwargs):
    return GoogleCustomSearchProvider(
        api_key="google-key",
        search_engine_id="cx-1",
        endpoint="https://www.googleapis.com/customsearch/v1",
        max_results=10,
        timeout_seconds=5,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_brave_maps_results_and_filters_denied_domains():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        seen["token"] = request.headers.get("X-Subscription-Token")
        return httpx.Response(200, json=BRAVE_BODY)

    result = await brave(handler).search(SearchRequest(query="tomato soup", max_results=5))

    assert result.success
    assert result.provider_id == "brave"
    assert result.total_results == 1200
    assert [c.url for c in result.candidates] == [
        "https://www.bonappetit.com/recipe/soup",
        "https://cooking.example.com/soup",
    ]
    first = result.candidates[0]
    assert (first.title, first.snippet, first.site_name, first.position) == ("Soup", "Warm.", "bonappetit.com", 0)
    assert result.candidates[1].position == 2
    assert seen["params"] == {"q": "tomato soup", "count": "5", "country": "US", "safesearch": "moderate"}
    assert seen["token"] == "brave-key"


@pytest.mark.asyncio
@pytest.mark.parametrize("status, code", [(429, "RATE_LIMITED"), (402, "QUOTA_EXCEEDED"), (500, "HTTP_500")])
async def test_brave_error_statuses(status, code):
    result = await brave(lambda request: httpx.Response(status, text="nope")).search(SearchRequest(query="soup"))
    assert not result.success
    assert result.error_code == code


@pytest.mark.asyncio
async def test_brave_timeout_and_bad_json():
    def timeout(request):
        raise httpx.ReadTimeout("slow", request=request)

    result = await brave(timeout).search(SearchRequest(query="soup"))
    assert result.error_code == "TIMEOUT"

    result = await brave(lambda request: httpx.Response(200, text="<html>")).search(SearchRequest(query="soup"))
    assert result.error_code == "PARSE_ERROR"


@pytest.mark.asyncio
async def test_disabled_unconfigured_and_empty_query():
    provider = brave(lambda request: httpx.Response(200, json=BRAVE_BODY), enabled=False)
    assert (await provider.search(SearchRequest(query="soup"))).error_code == "PROVIDER_DISABLED"

    provider = brave(lambda request: httpx.Response(200, json=BRAVE_BODY))
    provider.api_key = None
    assert not provider.is_configured
    assert (await provider.search(SearchRequest(query="soup"))).error_code == "PROVIDER_DISABLED"

    provider = brave(lambda request: httpx.Response(200, json=BRAVE_BODY))
    assert (await provider.search(SearchRequest(query="  "))).error_code == "INVALID_QUERY"


@pytest.mark.asyncio
async def test_provider_rate_limit():
    provider = brave(lambda request: httpx.Response(200, json=BRAVE_BODY), rate_limit_per_minute=1)
    assert (await provider.search(SearchRequest(query="soup"))).success
    assert (await provider.search(SearchRequest(query="soup"))).error_code == "RATE_LIMITED"


@pytest.mark.asyncio
async def test_google_maps_items():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=GOOGLE_BODY)

    result = await google(handler).search(SearchRequest(query="stew", max_results=25, safe_search="moderate"))

    assert result.success
    assert result.total_results == 5400
    assert [c.site_name for c in result.candidates] == ["food.example.org"]
    assert seen["params"]["num"] == "10"
    assert seen["params"]["cx"] == "cx-1"
    assert seen["params"]["safe"] == "medium"
    assert seen["params"]["lr"] == "lang_en"


@pytest.mark.asyncio
async def test_google_forbidden_quota():
    result = await google(lambda r: httpx.Response(403, text="Daily Limit Exceeded")).search(SearchRequest(query="x"))
    assert result.error_code == "QUOTA_EXCEEDED"
    result = await google(lambda r: httpx.Response(403, text="API key invalid")).search(SearchRequest(query="x"))
    assert result.error_code == "HTTP_403"


def test_rate_limiter_refills_over_time():
    now = [0.0]
    limiter = RateLimiter(2, clock=lambda: now[0])
    assert limiter.try_acquire()
    assert limiter.try_acquire()
    assert not limiter.try_acquire()
    now[0] += 30
    assert limiter.try_acquire()
    assert not limiter.try_acquire()


def test_is_domain_allowed():
    assert is_domain_allowed("https://www.seriouseats.com/x")
    assert not is_domain_allowed("mailto:someone@example.com")
    assert not is_domain_allowed("https://www.pinterest.com/x", denied=["pinterest.com"])
    assert is_domain_allowed("https://food.example.com/x", allowed=["example.com"])
    assert not is_domain_allowed("https://food.other.com/x", allowed=["example.com"])
    assert not is_domain_allowed("https://example.com/x", allowed=["example.com"], denied=["example.com"])


def test_domain_lists_match_whole_labels_only():
    allowed = ["allrecipes.com"]
    assert is_domain_allowed("https://allrecipes.com/recipe/1", allowed=allowed)
    assert is_domain_allowed("https://www.allrecipes.com/recipe/1", allowed=allowed)
    assert not is_domain_allowed("https://notallrecipes.com/recipe/1", allowed=allowed)
    assert is_domain_allowed("https://notpinterest.com/x", denied=["pinterest.com"])
    assert not is_domain_allowed("https://uk.pinterest.com/x", denied=["pinterest.com"])


def make_resolver(default="brave"):
    ok = lambda request: httpx.Response(200, json={})  # noqa: E731
    return SearchProviderResolver(
        [brave(ok), google(ok, enabled=False)],
        default_provider_id=default,
    )


def test_resolver_uses_default_and_is_case_insensitive():
    resolver = make_resolver()
    assert resolver.resolve().provider_id == "brave"
    assert resolver.resolve("BRAVE").provider_id == "brave"


def test_resolver_errors():
    resolver = make_resolver()
    with pytest.raises(SearchProviderNotFoundError) as exc_info:
        resolver.resolve("bing")
    assert exc_info.value.reason == "not found"
    with pytest.raises(SearchProviderNotFoundError) as exc_info:
        resolver.resolve("google")
    assert exc_info.value.reason == "is disabled"


def test_resolver_descriptors():
    resolver = make_resolver()
    descriptors = resolver.descriptors()
    assert [d.id for d in descriptors] == ["brave", "google"]
    assert descriptors[0].is_default
    assert not descriptors[1].enabled
    assert [d.id for d in resolver.list_enabled()] == ["brave"]
