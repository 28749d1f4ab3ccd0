import asyncio
import json
from datetime import datetime

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from recipe_ingest.app.api.deps import get_artifact_store_provider, get_db_session, get_task_enqueuer
from recipe_ingest.app.core.config import get_settings
from recipe_ingest.app.db import models  # noqa: F401
from recipe_ingest.app.db.base import Base
from recipe_ingest.app.main import create_app
from recipe_ingest.app.schemas.ingest import RecipeDraft
from recipe_ingest.app.schemas.recipe import ExtractionMethod, Ingredient, Recipe, RecipeSource
from recipe_ingest.app.services.ingest.artifacts import TaskArtifacts
from recipe_ingest.app.services.ingest.circuit_breaker import CircuitBreaker
from recipe_ingest.app.services.ingest.fetcher import Fetcher
from recipe_ingest.app.services.ingest.ssrf import SsrfGuard
from recipe_ingest.app.services.llm_client import LlmClientError
from recipe_ingest.app.services.storage.local import LocalArtifactStore

TOMATO_SOUP_JSON_LD = {
    "@context": "https://schema.org",
    "@type": "Recipe",
    "name": "Tomato Soup",
    "description": "A smooth and comforting soup made from ripe tomatoes and fresh basil.",
    "image": "https://example.com/images/tomato-soup.jpg",
    "recipeCuisine": "Italian",
    "recipeCategory": "Soup",
    "keywords": "tomato, basil, vegetarian",
    "prepTime": "PT10M",
    "cookTime": "PT30M",
    "recipeYield": "4 servings",
    "recipeIngredient": [
        "2 lb ripe tomatoes, chopped",
        "1 onion, diced",
        "2 cloves garlic",
        "3 cups vegetable broth",
        "1/4 cup fresh basil",
    ],
    "recipeInstructions": [
        {"@type": "HowToStep", "text": "Soften the onion and garlic in a large pot."},
        {"@type": "HowToStep", "text": "Add the tomatoes and broth, then simmer for twenty minutes."},
        {"@type": "HowToStep", "text": "Blend until smooth."},
        {"@type": "HowToStep", "text": "Stir in the basil and season to taste."},
    ],
}

TOMATO_SOUP_HTML = f"""
<html lang="en">
  <head>
    <title>Tomato Soup | Example Kitchen</title>
    <meta name="description" content="Weeknight tomato soup.">
    <meta name="author" content="Sam Cook">
    <meta property="og:site_name" content="Example Kitchen">
    <script type="application/ld+json">{json.dumps(TOMATO_SOUP_JSON_LD)}</script>
  </head>
  <body>
    <nav class="site-nav"><a href="/">Home</a></nav>
    <article>
      <h1>Tomato Soup</h1>
      <p>We make this every winter when the garden gives us too much fruit.</p>
    </article>
    <footer>Copyright Example Kitchen</footer>
  </body>
</html>
"""


@pytest.fixture(scope="session")
def engine():
    engine = create_engine("sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}, future=True)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(bind=connection, autocommit=False, autoflush=False, future=True)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def artifact_store(tmp_path):
    return LocalArtifactStore(tmp_path / "artifacts")


@pytest.fixture
def enqueued():
    return []


@pytest.fixture
def app(db_session, artifact_store, enqueued):
    app = create_app(initialize_db=False)

    def override_db():
        yield db_session

    def override_enqueuer():
        def enqueue(task_id, thread_id, **kwargs):
            enqueued.append((task_id, thread_id))

        return enqueue

    app.dependency_overrides[get_db_session] = override_db
    app.dependency_overrides[get_task_enqueuer] = override_enqueuer
    app.dependency_overrides[get_artifact_store_provider] = lambda: artifact_store
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_settings():
    return get_settings()


def make_token(user_id, email: str, settings) -> str:
    payload = {"sub": str(user_id), "email": email}
    return jwt.encode(payload, settings.auth_secret_key, algorithm=settings.auth_algorithm)


@pytest.fixture
def user_token(auth_settings):
    return make_token(1, "user1@example.com", auth_settings)


@pytest.fixture
def other_user_token(auth_settings):
    return make_token(2, "user2@example.com", auth_settings)


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class FakeRedis:
    def __init__(self):
        self.published = []
        self.values = {}

    def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 1

    def set(self, key, value, ex=None):
        self.values[key] = (json.loads(value), ex)
        return True


class FakeLlmClient:
    """Returns canned completions in order; exceptions in the list are raised."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    async def complete(self, messages, system_prompt=None, temperature=0.3, max_tokens=4096, json_mode=True):
        self.calls.append(
            {"messages": messages, "system_prompt": system_prompt, "temperature": temperature, "max_tokens": max_tokens}
        )
        if not self.responses:
            raise LlmClientError("no canned response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class SlowLlmClient:
    """Never answers before ``delay`` seconds; records whether the pending call was cancelled."""

    def __init__(self, delay=3.0, response="{}"):
        self.delay = delay
        self.response = response
        self.started = 0
        self.interrupted = False

    async def complete(self, messages, system_prompt=None, temperature=0.3, max_tokens=4096, json_mode=True):
        self.started += 1
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.interrupted = True
            raise
        return self.response


async def public_resolver(host):
    return ["93.184.216.34"]


def make_fetcher(handler, **kwargs) -> Fetcher:
    kwargs.setdefault("breaker", CircuitBreaker())
    kwargs.setdefault("ssrf_guard", SsrfGuard(resolver=public_resolver))
    kwargs.setdefault("respect_robots_txt", False)
    kwargs.setdefault("max_retries", 0)
    return Fetcher(transport=httpx.MockTransport(handler), **kwargs)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def artifact_factory(artifact_store):
    def factory(thread_id, task_id):
        return TaskArtifacts(thread_id, task_id, artifact_store)

    return factory


def tomato_recipe(**overrides) -> Recipe:
    values = dict(
        id="recipe-1",
        name="Tomato Soup",
        description="A smooth and comforting soup made from ripe tomatoes and fresh basil.",
        ingredients=[
            Ingredient(name="ripe tomatoes", quantity=2, unit="lb", notes="chopped"),
            Ingredient(name="onion", quantity=1, notes="diced"),
            Ingredient(name="garlic", quantity=2, unit="cloves"),
            Ingredient(name="vegetable broth", quantity=3, unit="cups"),
            Ingredient(name="fresh basil", quantity=0.25, unit="cup"),
        ],
        instructions=[
            "Soften the onion and garlic in a large pot.",
            "Add the tomatoes and broth, then simmer for twenty minutes.",
            "Blend until smooth.",
            "Stir in the basil and season to taste.",
        ],
        cuisine="Italian",
        prep_time_minutes=10,
        cook_time_minutes=30,
        servings=4,
        tags=["Soup", "tomato"],
        image_url="https://example.com/images/tomato-soup.jpg",
    )
    values.update(overrides)
    return Recipe(**values)


def tomato_draft(**overrides) -> RecipeDraft:
    values = dict(
        recipe=tomato_recipe(),
        source=RecipeSource(
            url="https://example.com/recipe",
            url_hash="abc",
            site_name="example.com",
            retrieved_at=datetime(2024, 1, 1),
            extraction_method=ExtractionMethod.JSON_LD,
        ),
    )
    values.update(overrides)
    return RecipeDraft(**values)
