import json

import pytest

from recipe_ingest.app.services import queue_service


class FakeQueue:
    def __init__(self, fail=False):
        self.jobs = []
        self.fail = fail

    def enqueue(self, func, *args, **kwargs):
        if self.fail:
            raise ConnectionError("redis is down")
        self.jobs.append((func, args, kwargs))

    def __len__(self):
        return len(self.jobs)


def test_create_envelope():
    envelope = queue_service.create_envelope(
        job_type=queue_service.JOB_TYPE_INGEST,
        job_id="task-1",
        workflow_id="thread-1",
        payload={"task_id": "task-1"},
        request_id="req-1",
    )
    assert envelope["schema_version"] == 1
    assert envelope["job_type"] == "recipe.ingest.requested"
    assert envelope["source"] == "recipe-ingest"
    assert envelope["attempt"] == 1
    assert envelope["trace"] == {"request_id": "req-1", "parent_job_id": None}


def test_enqueue_ingest_task(monkeypatch):
    queue = FakeQueue()
    monkeypatch.setattr(queue_service, "get_queue", lambda name=queue_service.QUEUE_INGEST: queue)

    queue_service.enqueue_ingest_task("task-1", "thread-1", attempt=2)

    func, args, kwargs = queue.jobs[0]
    assert func == "recipe_ingest.app.services.queue_worker.process_job"
    assert kwargs["job_id"] == "task-1"
    envelope = json.loads(args[0])
    assert envelope["workflow_id"] == "thread-1"
    assert envelope["payload"] == {"task_id": "task-1"}
    assert envelope["attempt"] == 2
    assert queue_service.get_queue_length() == 1


def test_enqueue_failure_propagates(monkeypatch):
    monkeypatch.setattr(queue_service, "get_queue", lambda name=queue_service.QUEUE_INGEST: FakeQueue(fail=True))
    with pytest.raises(ConnectionError):
        queue_service.enqueue_ingest_task("task-1", "thread-1")


def test_queue_length_is_zero_when_redis_unavailable(monkeypatch):
    def broken(name=queue_service.QUEUE_INGEST):
        raise ConnectionError("redis is down")

    monkeypatch.setattr(queue_service, "get_queue", broken)
    assert queue_service.get_queue_length() == 0
