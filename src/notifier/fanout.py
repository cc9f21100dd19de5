"""Notification Fanout.

"처리 완료"와 "구독자에게 알림"을 분리한다. 알림 전달이 느리거나 실패해도
처리 경로(워커)는 막히지 않는다.

- 같은 (imageId, status) 이벤트가 다시 오면 전달하지 않고 ack한다
- 구독자 전달 실패는 로그만 남기고 재시도하지 않는다
- 디코딩할 수 없는 이벤트는 reject(requeue=False)
"""

from collections import OrderedDict

from loguru import logger

from core.exceptions import MalformedMessage
from messaging.base import Delivery
from model.envelope import EventEnvelope
from notifier.subscribers import Subscriber


class NotificationFanout:
    def __init__(self, subscribers: list[Subscriber], dedup_size: int = 1024):
        self.subscribers = list(subscribers)
        self.dedup_size = dedup_size
        self._seen: OrderedDict[tuple[str, str], None] = OrderedDict()
        self.delivered = 0
        self.failures = 0

    def handle(self, delivery: Delivery) -> None:
        try:
            event = EventEnvelope.decode(delivery.body)
        except MalformedMessage as e:
            logger.error(f"Malformed notification dropped ({delivery.delivery_tag}): {e}")
            delivery.reject(requeue=False)
            return

        logger.info(f" [x] Received notification for image {event.image_id} ({event.status})")
        if self._is_duplicate(event):
            logger.debug(f"Duplicate {event.status} notification for image {event.image_id} skipped")
            delivery.ack()
            return

        for subscriber in self.subscribers:
            try:
                subscriber.deliver(event)
                self.delivered += 1
            except Exception as e:
                self.failures += 1
                logger.warning(
                    f"Subscriber {subscriber.name} failed for image {event.image_id} ({event.status}): {e}"
                )

        self._remember(event)
        delivery.ack()

    def _is_duplicate(self, event: EventEnvelope) -> bool:
        key = event.dedup_key
        if key in self._seen:
            self._seen.move_to_end(key)
            return True
        return False

    def _remember(self, event: EventEnvelope) -> None:
        self._seen[event.dedup_key] = None
        while len(self._seen) > self.dedup_size:
            self._seen.popitem(last=False)
