from loguru import logger

from core.config import Settings
from core.exceptions import QueueUnavailable
from messaging.memory import InMemoryBroker
from messaging.redis_queue import RedisBroker


def connect_broker(settings: Settings):
    """설정에 맞는 브로커 연결을 만들고 ping으로 확인한다.

    연결할 수 없으면 QueueUnavailable을 그대로 올린다.
    (처리 능력 없이 떠 있는 서비스보다 시작 실패가 낫다)
    """
    backend = settings.QUEUE_BACKEND.lower()
    if backend == "memory":
        logger.warning("Using in-memory queue backend (single process, not durable)")
        return InMemoryBroker(poll_seconds=min(settings.QUEUE_POLL_SECONDS, 0.1))
    if backend != "redis":
        raise QueueUnavailable(f"지원하지 않는 QUEUE_BACKEND: {settings.QUEUE_BACKEND}")

    broker = RedisBroker.from_url(
        settings.REDIS_URL,
        consumer_id=settings.CONSUMER_ID,
        poll_seconds=settings.QUEUE_POLL_SECONDS,
        heartbeat_seconds=settings.CONSUMER_HEARTBEAT_SECONDS,
    )
    try:
        broker.ping()
    except QueueUnavailable as e:
        logger.error(f"Broker connection error ({settings.REDIS_URL}): {e}")
        raise
    logger.info(f"Broker connected ({settings.REDIS_URL}, consumer={settings.CONSUMER_ID})")
    return broker
