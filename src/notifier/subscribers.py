"""알림 구독자.

구독자는 EventEnvelope 한 건을 받아 전달을 시도한다. 실패하면 예외를 올리고,
재시도 여부는 fanout이 결정한다 (재시도하지 않고 로그만 남긴다).
"""

from typing import Protocol

import httpx
from loguru import logger

from model.envelope import EventEnvelope


class Subscriber(Protocol):
    name: str

    def deliver(self, event: EventEnvelope) -> None: ...


class LogSubscriber:
    name = "log"

    def deliver(self, event: EventEnvelope) -> None:
        if event.status == "completed":
            logger.info(f"Image {event.image_id} processing completed! {event.processed_url}")
        else:
            logger.warning(f"Image {event.image_id} processing failed! Error: {event.error}")


class WebhookSubscriber:
    """이벤트 JSON을 그대로 webhook URL에 POST한다."""

    def __init__(self, url: str, timeout: float = 5.0, client: httpx.Client | None = None):
        self.url = url
        self.name = f"webhook:{url}"
        self._client = client or httpx.Client(timeout=timeout)

    def deliver(self, event: EventEnvelope) -> None:
        resp = self._client.post(
            self.url,
            content=event.encode(),
            headers={"Content-Type": "application/json"},
        )
        resp.raise_for_status()

    def close(self) -> None:
        self._client.close()


def build_subscribers(settings) -> list[Subscriber]:
    subscribers: list[Subscriber] = [LogSubscriber()]
    for url in settings.NOTIFY_WEBHOOK_URLS:
        subscribers.append(WebhookSubscriber(url, timeout=settings.NOTIFY_WEBHOOK_TIMEOUT_SECONDS))
    return subscribers
