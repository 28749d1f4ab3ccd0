from conftest import auth_header, tomato_draft, tomato_recipe
from recipe_ingest.app.api.deps import get_task_enqueuer
from recipe_ingest.app.db import models
from recipe_ingest.app.schemas.ingest import (
    IngestPayload,
    NormalizePatchOperation,
    NormalizePatchResponse,
)
from recipe_ingest.app.services import task_service
from recipe_ingest.app.services.ingest.artifacts import TaskArtifacts
from recipe_ingest.app.services.ingest.search import SearchProviderResolver
from recipe_ingest.app.services.ingest.search.brave import BraveSearchProvider
from recipe_ingest.app.services.ingest.search.google import GoogleCustomSearchProvider


def url_body(url="https://example.com/tomato-soup", **extra):
    return {"payload": {"mode": "Url", "url": url}, **extra}


def review_ready_task(db, draft=None, payload=None, user_id="1"):
    payload = payload or IngestPayload(mode="Url", url="https://example.com/tomato-soup")
    task = task_service.create_task(db, user_id, payload)
    task_service.mark_running(db, task)
    task_service.mark_review_ready(db, task, draft or tomato_draft())
    return task


def test_create_task_queues_job(client, user_token, enqueued):
    resp = client.post("/ingest/tasks", json=url_body(threadId="thread-7"), headers=auth_header(user_token))
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "PENDING"
    assert data["mode"] == "Url"
    assert data["thread_id"] == "thread-7"
    assert data["progress"] == 0
    assert enqueued == [(data["task_id"], "thread-7")]


def test_query_mode_is_accepted_case_insensitively(client, user_token):
    body = {"payload": {"mode": "query", "query": "tomato soup", "search": {"providerId": "brave"}}}
    resp = client.post("/ingest/tasks", json=body, headers=auth_header(user_token))
    assert resp.status_code == 201
    assert resp.json()["mode"] == "Query"


def test_create_task_rejects_invalid_payload(client, user_token, enqueued):
    resp = client.post("/ingest/tasks", json={"payload": {"mode": "Fax"}}, headers=auth_header(user_token))
    assert resp.status_code == 422
    data = resp.json()
    assert data["error_code"] == "INVALID_PAYLOAD"
    assert data["details"]
    assert data["request_id"]
    assert enqueued == []


def test_create_task_requires_mode_fields(client, user_token):
    cases = [
        ({"mode": "Url"}, "MISSING_URL", "payload.url"),
        ({"mode": "Query", "query": "   "}, "MISSING_QUERY", "payload.query"),
        ({"mode": "Normalize"}, "MISSING_RECIPE_ID", "payload.recipeId"),
    ]
    for payload, code, field in cases:
        resp = client.post("/ingest/tasks", json={"payload": payload}, headers=auth_header(user_token))
        assert resp.status_code == 422
        assert resp.json()["error_code"] == code
        assert resp.json()["details"][0]["field"] == field


def test_create_task_rejects_unsafe_url(client, user_token):
    resp = client.post("/ingest/tasks", json=url_body("ftp://example.com/recipe"), headers=auth_header(user_token))
    assert resp.status_code == 422
    data = resp.json()
    assert data["error_code"] == "INVALID_URL"
    assert data["details"][0]["reason"] == "INVALID_SCHEME"


def test_queue_outage_fails_task(app, client, user_token, db_session):
    def broken_enqueuer():
        def enqueue(task_id, thread_id, **kwargs):
            raise ConnectionError("redis is down")

        return enqueue

    app.dependency_overrides[get_task_enqueuer] = broken_enqueuer
    resp = client.post("/ingest/tasks", json=url_body(), headers=auth_header(user_token))
    assert resp.status_code == 503

    task = db_session.query(models.IngestTask).one()
    assert task.status == "FAILED"
    assert task.error_code == "QUEUE_UNAVAILABLE"


def test_requires_auth(client, user_token):
    resp = client.post("/ingest/tasks", json=url_body())
    assert resp.status_code in (401, 403)

    resp = client.get("/ingest/tasks/whatever", headers=auth_header("not-a-token"))
    assert resp.status_code == 401


def test_get_task(client, user_token, other_user_token, db_session):
    task = review_ready_task(db_session)

    resp = client.get(f"/ingest/tasks/{task.id}", headers=auth_header(user_token))
    assert resp.status_code == 200
    data = resp.json()
    assert data["task_id"] == task.id
    assert data["status"] == "REVIEW_READY"
    assert data["progress"] == 100
    assert data["committable"] is True
    assert data["result"]["recipe"]["name"] == "Tomato Soup"

    resp = client.get(f"/ingest/tasks/{task.id}", headers=auth_header(other_user_token))
    assert resp.status_code == 404


def test_cancel_task(client, user_token):
    created = client.post("/ingest/tasks", json=url_body(), headers=auth_header(user_token)).json()

    resp = client.post(f"/ingest/tasks/{created['task_id']}/cancel", headers=auth_header(user_token))
    assert resp.status_code == 200
    assert resp.json() == {"taskId": created["task_id"], "status": "CANCELED", "message": "Cancel requested"}

    resp = client.post(f"/ingest/tasks/{created['task_id']}/cancel", headers=auth_header(user_token))
    assert resp.status_code == 409


def test_commit_task(client, user_token, db_session):
    task = review_ready_task(db_session)

    resp = client.post(f"/ingest/tasks/{task.id}/commit", headers=auth_header(user_token))
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "Tomato Soup"
    assert data["document"]["id"] == data["id"]
    assert data["document"]["prepTimeMinutes"] == 10
    assert data["source_json"]["url"] == "https://example.com/recipe"

    resp = client.post(f"/ingest/tasks/{task.id}/commit", headers=auth_header(user_token))
    assert resp.status_code == 409
    assert resp.json()["detail"]["error_code"] == "INVALID_TASK_STATE"


def test_commit_blocked_by_validation_errors(client, user_token, db_session):
    draft = tomato_draft()
    draft.validation_report.errors.append("Recipe must have at least one ingredient")
    task = review_ready_task(db_session, draft)

    assert client.get(f"/ingest/tasks/{task.id}", headers=auth_header(user_token)).json()["committable"] is False
    resp = client.post(f"/ingest/tasks/{task.id}/commit", headers=auth_header(user_token))
    assert resp.status_code == 409
    assert resp.json()["detail"]["error_code"] == "DRAFT_NOT_COMMITTABLE"


def test_reject_task(client, user_token, db_session):
    task = review_ready_task(db_session)

    resp = client.post(f"/ingest/tasks/{task.id}/reject", json={"reason": "too salty"}, headers=auth_header(user_token))
    assert resp.status_code == 200
    assert resp.json()["status"] == "REJECTED"
    assert resp.json()["message"] == "Task rejected"

    resp = client.post(f"/ingest/tasks/{task.id}/reject", headers=auth_header(user_token))
    assert resp.status_code == 200
    assert resp.json()["message"] == "Task was already rejected"


def test_reject_requires_review_ready(client, user_token):
    created = client.post("/ingest/tasks", json=url_body(), headers=auth_header(user_token)).json()
    resp = client.post(f"/ingest/tasks/{created['task_id']}/reject", headers=auth_header(user_token))
    assert resp.status_code == 400
    assert resp.json()["detail"]["error_code"] == "INVALID_TASK_STATE"


def test_apply_normalize_patches(client, user_token, db_session):
    recipe = tomato_recipe()
    patches = NormalizePatchResponse(
        patches=[
            NormalizePatchOperation(op="replace", path="/name", value="Tomato soup", risk_category="low"),
            NormalizePatchOperation(op="add", path="/tags/-", value="vegetarian", risk_category="medium"),
        ]
    )
    draft = tomato_draft(recipe=recipe, normalize_patches=patches, original_recipe=recipe)
    task = review_ready_task(db_session, draft, IngestPayload(mode="Normalize", recipe_id="recipe-1"))

    resp = client.post(
        f"/ingest/tasks/{task.id}/normalize/apply", json={"maxRiskLevel": "low"}, headers=auth_header(user_token)
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["normalizedRecipe"]["name"] == "Tomato soup"
    assert data["normalizedRecipe"]["tags"] == ["Soup", "tomato"]
    assert len(data["appliedPatches"]) == 1


def test_apply_patches_on_url_draft_conflicts(client, user_token, db_session):
    task = review_ready_task(db_session)
    resp = client.post(f"/ingest/tasks/{task.id}/normalize/apply", json={}, headers=auth_header(user_token))
    assert resp.status_code == 409
    assert resp.json()["detail"]["error_code"] == "NOT_A_NORMALIZE_DRAFT"


def test_list_artifacts(client, user_token, db_session, artifact_store):
    task = review_ready_task(db_session)
    artifacts = TaskArtifacts(task.thread_id, task.id, artifact_store)
    artifacts.write_text("Ingest.Fetch", "raw.html", "<html></html>")
    artifacts.write_json("Ingest.Validate", "validation.json", {"errors": []})

    resp = client.get(f"/ingest/tasks/{task.id}/artifacts", headers=auth_header(user_token))
    assert resp.status_code == 200
    assert {item["type"] for item in resp.json()} == {"raw.html", "validation.json"}


def test_list_search_providers(client, user_token, monkeypatch):
    resolver = SearchProviderResolver(
        [
            BraveSearchProvider(api_key="brave-key", endpoint="https://brave.test/search", max_results=10, timeout_seconds=5),
            GoogleCustomSearchProvider(
                api_key=None, search_engine_id=None, endpoint="https://google.test/search", max_results=10, timeout_seconds=5
            ),
        ],
        default_provider_id="brave",
    )
    monkeypatch.setattr("recipe_ingest.app.api.routes.ingest.get_search_resolver", lambda: resolver)

    resp = client.get("/ingest/search/providers", headers=auth_header(user_token))
    assert resp.status_code == 200
    providers = resp.json()
    assert [p["id"] for p in providers] == ["brave"]
    assert providers[0]["is_default"] is True


def test_health(client, monkeypatch):
    monkeypatch.setattr("recipe_ingest.app.main.get_queue_length", lambda: 3)
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "queue_length": 3}
