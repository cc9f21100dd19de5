"""Outbox relay.

게이트웨이는 이미지 레코드와 발행할 Task 메시지(OutboxEntry)를 한 트랜잭션에
저장한다. relay는 아직 보내지 않은 항목을 큐에 넣고 sent_at을 기록한다.
큐에 넣은 뒤 sent_at 기록 전에 죽으면 같은 Task가 한 번 더 발행될 수 있다
(워커는 중복 전달을 처리할 수 있다).
"""

import threading

from loguru import logger

from service.state_store import StateStore


class OutboxRelay:
    def __init__(self, store: StateStore, broker, batch_size: int = 100):
        self.store = store
        self.broker = broker
        self.batch_size = batch_size
        self._lock = threading.Lock()

    def flush(self) -> int:
        """대기 중인 항목을 발행한다. 발행 실패 시 예외를 그대로 올린다."""
        sent = 0
        with self._lock:
            for entry in self.store.pending_outbox(self.batch_size):
                self.broker.queue(entry.queue).enqueue(entry.payload.encode("utf-8"), durable=True)
                self.store.mark_sent(entry.id)
                sent += 1
                logger.info(f"Message sent to {entry.queue} for image {entry.image_id}")
        return sent

    def run(self, stop: threading.Event, interval: float) -> None:
        """stop이 설정될 때까지 interval마다 flush한다."""
        while not stop.wait(interval):
            try:
                sent = self.flush()
            except Exception as e:
                logger.warning(f"Outbox relay flush failed, will retry in {interval:g}s: {e}")
                continue
            if sent:
                logger.info(f"Outbox relay published {sent} pending message(s)")
