"""InMemoryWorkQueue 전달/확인 규칙 테스트."""

import threading

import pytest

from messaging.memory import InMemoryWorkQueue


@pytest.fixture()
def queue(clock):
    return InMemoryWorkQueue("q", poll_seconds=0.01, clock=clock)


def test_fifo_and_ack(queue):
    for body in (b"a", b"b", b"c"):
        queue.enqueue(body)
    seen = []

    def handler(delivery):
        seen.append(delivery.body)
        delivery.ack()

    assert queue.consume(handler, drain=True) == 3
    assert seen == [b"a", b"b", b"c"]
    assert len(queue) == 0


def test_reject_with_requeue_redelivers_next(queue):
    """requeue된 메시지는 같은 세션에서 바로 다음에 redelivered=True로 다시 온다."""
    queue.enqueue(b"a")
    queue.enqueue(b"b")
    seen = []

    def handler(delivery):
        seen.append((delivery.body, delivery.redelivered))
        if delivery.body == b"a" and not delivery.redelivered:
            delivery.reject(requeue=True)
        else:
            delivery.ack()

    queue.consume(handler, drain=True)
    assert seen == [(b"a", False), (b"a", True), (b"b", False)]


def test_reject_without_requeue_is_dead(queue):
    queue.enqueue(b"poison")
    queue.consume(lambda d: d.reject(requeue=False), drain=True)

    assert queue.dead == [b"poison"]
    assert queue.consume(lambda d: d.ack(), drain=True) == 0


def test_max_in_flight_bounds_prefetch(queue):
    for i in range(5):
        queue.enqueue(str(i).encode())
    inflight = []

    def handler(delivery):
        inflight.append(queue._inflight_count())
        delivery.ack()

    queue.consume(handler, max_in_flight=2, drain=True)
    assert max(inflight) <= 2
    assert len(inflight) == 5


def test_max_in_flight_must_be_positive(queue):
    with pytest.raises(ValueError):
        queue.consume(lambda d: d.ack(), max_in_flight=0, drain=True)


def test_delayed_message_waits_for_clock(queue, clock):
    queue.enqueue(b"later", delay=30)
    assert queue.consume(lambda d: d.ack(), drain=True) == 0

    clock.advance(30)
    assert queue.consume(lambda d: d.ack(), drain=True) == 1


def test_unsettled_messages_are_recovered_on_next_session(queue):
    """이전 세션이 ack하지 못한 메시지는 다음 consume 시작 시 재전달된다."""
    queue.enqueue(b"a")
    delivery = queue._fetch(0)
    assert delivery is not None

    seen = []

    def handler(d):
        seen.append((d.body, d.redelivered))
        d.ack()

    queue.consume(handler, drain=True)
    assert seen == [(b"a", True)]


def test_handler_exception_rejects_without_requeue(queue):
    queue.enqueue(b"boom")

    def handler(delivery):
        raise RuntimeError("unexpected")

    queue.consume(handler, drain=True)
    assert queue.dead == [b"boom"]


def test_double_settle_raises(queue):
    queue.enqueue(b"a")
    errors = []

    def handler(delivery):
        delivery.ack()
        try:
            delivery.ack()
        except RuntimeError as e:
            errors.append(e)

    queue.consume(handler, drain=True)
    assert len(errors) == 1


def test_stop_event_ends_consumer(queue):
    stop = threading.Event()
    seen = []

    def handler(delivery):
        seen.append(delivery.body)
        delivery.ack()
        stop.set()

    queue.enqueue(b"a")
    queue.enqueue(b"b")
    queue.consume(handler, stop=stop)

    assert seen == [b"a"]
    # 멈출 때 prefetch 되지 않은 메시지는 큐에 그대로 남는다
    assert queue.pending() == [b"b"]


def test_prefetched_messages_keep_order_when_stopped(queue):
    stop = threading.Event()
    seen = []

    def handler(delivery):
        seen.append(delivery.body)
        delivery.ack()
        stop.set()

    for body in (b"a", b"b", b"c", b"d"):
        queue.enqueue(body)
    queue.consume(handler, max_in_flight=3, stop=stop)

    assert seen == [b"a"]
    assert queue.pending() == [b"b", b"c", b"d"]

    rest = []
    queue.consume(lambda d: (rest.append((d.body, d.redelivered)), d.ack()), drain=True)
    assert rest == [(b"b", True), (b"c", True), (b"d", False)]
