from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import FakeRedis
from recipe_ingest.app.schemas.ingest import IngestPayload
from recipe_ingest.app.services import task_service
from recipe_ingest.app.services.ingest.progress import STATE_TTL_SECONDS, ProgressReporter


class BrokenRedis:
    def publish(self, channel, message):
        raise RedisConnectionError("redis is down")

    def set(self, key, value, ex=None):
        raise RedisConnectionError("redis is down")


def make_task(db):
    payload = IngestPayload(mode="Url", url="https://example.com/recipe")
    return task_service.create_task(db, "1", payload, thread_id="thread-1")


def test_report_updates_task_and_publishes(db_session, fake_redis):
    task = make_task(db_session)
    reporter = ProgressReporter(db_session, task, fake_redis)

    event = reporter.report("Ingest.Fetch", 15, "Fetch complete")

    assert event.progress == 15
    assert task.current_phase == "Ingest.Fetch"
    assert task.progress == 15
    assert task.status_message == "Fetch complete"

    channel, message = fake_redis.published[0]
    assert channel == "ingest:thread:thread-1"
    assert message["type"] == "ingest.progress"
    assert message["data"]["taskId"] == task.id
    assert message["data"]["phase"] == "Ingest.Fetch"
    assert message["data"]["progress"] == 15

    state, ttl = fake_redis.values[f"ingest:task:{task.id}:state"]
    assert ttl == STATE_TTL_SECONDS
    assert state["status"] == "PENDING"
    assert state["currentPhase"] == "Ingest.Fetch"
    assert state["result"] == "Fetch complete"


def test_progress_is_clamped(db_session):
    task = make_task(db_session)
    reporter = ProgressReporter(db_session, task, FakeRedis())
    assert reporter.report("Ingest.Extract", 140, "too far").progress == 100
    assert reporter.report("Ingest.Extract", -5, "too early").progress == 0


def test_state_prefers_error_message(db_session, fake_redis):
    task = make_task(db_session)
    task_service.mark_failed(db_session, task, "HTTP_404", "API returned status 404", "Ingest.Fetch")
    ProgressReporter(db_session, task, fake_redis).mirror_state()
    state, _ = fake_redis.values[f"ingest:task:{task.id}:state"]
    assert state["status"] == "FAILED"
    assert state["result"] == "API returned status 404"


def test_redis_failures_do_not_break_reporting(db_session):
    task = make_task(db_session)
    reporter = ProgressReporter(db_session, task, BrokenRedis())
    reporter.report("Ingest.Validate", 55, "Validating")
    assert task.progress == 55
