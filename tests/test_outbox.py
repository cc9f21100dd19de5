"""OutboxRelay: 레코드와 발행 예약의 원자성, 재발행."""

import threading

import pytest

from model.envelope import TaskEnvelope
from model.image import ImageRecord, OutboxEntry
from service.outbox import OutboxRelay


def _create(store, image_id: str, queue: str = "tasks"):
    task = TaskEnvelope(image_id=image_id, unique_filename=f"{image_id}.jpg", original_path=f"/x/{image_id}.jpg")
    store.create(
        ImageRecord(id=image_id, unique_filename=f"{image_id}.jpg", original_filename="a.jpg", mime_type="image/jpeg", size=1),
        outbox=[OutboxEntry(image_id=image_id, queue=queue, payload=task.encode().decode("utf-8"))],
    )
    return task


def test_flush_publishes_and_marks_sent(store, broker):
    task = _create(store, "i1")
    relay = OutboxRelay(store, broker)

    assert relay.flush() == 1
    assert [TaskEnvelope.decode(b) for b in broker.queue("tasks").pending()] == [task]
    assert store.pending_outbox() == []
    assert relay.flush() == 0


def test_failed_flush_keeps_entry_for_retry(store, broker, monkeypatch):
    _create(store, "i1")
    relay = OutboxRelay(store, broker)
    queue = broker.queue("tasks")
    real_enqueue = queue.enqueue

    def down(*args, **kwargs):
        raise ConnectionError("broker down")

    monkeypatch.setattr(queue, "enqueue", down)
    with pytest.raises(ConnectionError):
        relay.flush()
    assert len(store.pending_outbox()) == 1

    monkeypatch.setattr(queue, "enqueue", real_enqueue)
    assert relay.flush() == 1
    assert len(queue) == 1


def test_entries_are_published_in_creation_order(store, broker):
    for image_id in ("a", "b", "c"):
        _create(store, image_id)

    OutboxRelay(store, broker).flush()

    assert [TaskEnvelope.decode(b).image_id for b in broker.queue("tasks").pending()] == ["a", "b", "c"]


def test_run_stops_when_event_set(store, broker):
    relay = OutboxRelay(store, broker)
    stop = threading.Event()
    stop.set()

    relay.run(stop, interval=0.01)
