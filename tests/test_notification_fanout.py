"""NotificationFanout + 구독자 테스트."""

import json

import httpx
import pytest

from model.envelope import EventEnvelope
from notifier.fanout import NotificationFanout
from notifier.subscribers import LogSubscriber, WebhookSubscriber, build_subscribers


class RecordingSubscriber:
    name = "recording"

    def __init__(self):
        self.events = []

    def deliver(self, event):
        self.events.append(event)


class BrokenSubscriber:
    name = "broken"

    def deliver(self, event):
        raise ConnectionError("subscriber offline")


def _completed(image_id: str = "i1") -> bytes:
    return EventEnvelope(
        image_id=image_id,
        status="completed",
        message="Your image has been processed!",
        processed_url=f"/images/processed/processed-{image_id}.jpg",
    ).encode()


@pytest.fixture()
def queue(broker):
    return broker.queue("notifications")


def test_event_delivered_to_all_subscribers(queue):
    a, b = RecordingSubscriber(), RecordingSubscriber()
    fanout = NotificationFanout([a, b])
    queue.enqueue(_completed())

    queue.consume(fanout.handle, drain=True)

    assert [e.image_id for e in a.events] == ["i1"]
    assert [e.image_id for e in b.events] == ["i1"]
    assert len(queue) == 0


def test_duplicate_event_is_noop(queue):
    """같은 completed 이벤트가 두 번 와도 한 번만 전달하고 둘 다 ack한다."""
    sub = RecordingSubscriber()
    fanout = NotificationFanout([sub])
    queue.enqueue(_completed())
    queue.enqueue(_completed())

    assert queue.consume(fanout.handle, drain=True) == 2
    assert len(sub.events) == 1
    assert queue.dead == []


def test_failed_after_completed_is_not_a_duplicate(queue):
    sub = RecordingSubscriber()
    fanout = NotificationFanout([sub])
    queue.enqueue(_completed())
    queue.enqueue(EventEnvelope(image_id="i1", status="failed", message="x", error="boom").encode())

    queue.consume(fanout.handle, drain=True)
    assert [e.status for e in sub.events] == ["completed", "failed"]


def test_subscriber_failure_is_logged_not_retried(queue):
    ok = RecordingSubscriber()
    fanout = NotificationFanout([BrokenSubscriber(), ok])
    queue.enqueue(_completed())

    queue.consume(fanout.handle, drain=True)

    assert len(ok.events) == 1
    assert fanout.failures == 1
    assert len(queue) == 0
    assert queue.dead == []


def test_malformed_event_rejected(queue):
    fanout = NotificationFanout([RecordingSubscriber()])
    queue.enqueue(b'{"imageId": "i1", "status": "exploded"}')

    queue.consume(fanout.handle, drain=True)
    assert len(queue.dead) == 1


def test_dedup_window_is_bounded(queue):
    sub = RecordingSubscriber()
    fanout = NotificationFanout([sub], dedup_size=2)
    for image_id in ("a", "b", "c", "a"):
        queue.enqueue(_completed(image_id))

    queue.consume(fanout.handle, drain=True)
    # "a"는 창에서 밀려났으므로 다시 전달된다
    assert [e.image_id for e in sub.events] == ["a", "b", "c", "a"]


def test_webhook_subscriber_posts_event_json():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(204)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    sub = WebhookSubscriber("http://hooks.test/images", client=client)

    sub.deliver(EventEnvelope.decode(_completed()))

    assert received == [
        {
            "imageId": "i1",
            "status": "completed",
            "message": "Your image has been processed!",
            "processedUrl": "/images/processed/processed-i1.jpg",
        }
    ]


def test_webhook_subscriber_raises_on_error_status():
    client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    sub = WebhookSubscriber("http://hooks.test/images", client=client)

    with pytest.raises(httpx.HTTPStatusError):
        sub.deliver(EventEnvelope.decode(_completed()))


def test_build_subscribers(settings):
    settings.NOTIFY_WEBHOOK_URLS = ["http://a.test/hook"]
    subs = build_subscribers(settings)

    assert isinstance(subs[0], LogSubscriber)
    assert [s.name for s in subs] == ["log", "webhook:http://a.test/hook"]
