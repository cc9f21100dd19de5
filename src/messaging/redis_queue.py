"""Redis 리스트 기반 durable Work Queue (reliable queue 패턴).

키 구성 (name = 큐 이름):
    <name>                         대기 메시지 (LPUSH로 넣고 오른쪽에서 꺼낸다)
    <name>:inflight:<consumer_id>  컨슈머 세션이 쥐고 있는 미확인 메시지
    <name>:alive:<consumer_id>     컨슈머 heartbeat (TTL 키)
    <name>:redelivered             재전달 표시 (HASH, field = 본문 sha1)
    <name>:delayed                 지연 재전달 대기 (ZSET, score = 전달 가능 시각)
    <name>:dead                    reject(requeue=False)된 메시지 (운영자 확인용)

리스트 항목은 메시지 본문(envelope JSON) 그대로다. 다른 프로세스가 LPUSH한
JSON도 같은 방식으로 소비된다.

꺼내기는 LMOVE/BLMOVE로 대기 목록에서 in-flight 목록으로 원자적으로 옮기므로
ack 전에 컨슈머가 죽어도 메시지는 in-flight 목록에 남는다. 컨슈머가 시작할 때
자기 것과 heartbeat가 끊긴 컨슈머의 in-flight 목록을 대기 목록 맨 앞으로 돌려놓는다.
"""

import hashlib
import time
import uuid

import redis
from loguru import logger

from core.exceptions import QueueUnavailable
from messaging.base import ConsumingQueue, Delivery

DEAD_LETTER_LIMIT = 1000


def _digest(raw: bytes) -> str:
    return hashlib.sha1(raw).hexdigest()


class RedisWorkQueue(ConsumingQueue):
    def __init__(
        self,
        client: redis.Redis,
        name: str,
        consumer_id: str,
        poll_seconds: float = 1.0,
        heartbeat_seconds: float = 60.0,
    ):
        self.client = client
        self.name = name
        self.consumer_id = consumer_id
        self.poll_seconds = poll_seconds
        self.heartbeat_seconds = heartbeat_seconds
        self.inflight_key = f"{name}:inflight:{consumer_id}"
        self.alive_key = f"{name}:alive:{consumer_id}"
        self.redelivered_key = f"{name}:redelivered"
        self.delayed_key = f"{name}:delayed"
        self.dead_key = f"{name}:dead"
        # delivery_tag -> in-flight 목록에 들어 있는 원문 (LREM에 필요)
        self._raw_by_tag: dict[str, bytes] = {}
        self._next_orphan_scan = 0.0

    def enqueue(self, body: bytes, durable: bool = True, delay: float = 0) -> None:
        if delay > 0:
            self.client.zadd(self.delayed_key, {body: time.time() + delay})
        else:
            self.client.lpush(self.name, body)

    def ping(self) -> None:
        try:
            self.client.ping()
        except redis.exceptions.RedisError as e:
            raise QueueUnavailable(str(e)) from e

    def heartbeat(self) -> None:
        self.client.set(self.alive_key, self.consumer_id, ex=max(1, int(self.heartbeat_seconds)))

    # --- ConsumingQueue 구현 ---

    def _recover(self) -> int:
        self.heartbeat()
        return self._reclaim(self.inflight_key) + self.reclaim_orphans()

    def reclaim_orphans(self) -> int:
        """heartbeat가 끊긴 다른 컨슈머의 in-flight 메시지를 대기 목록으로 돌려놓는다."""
        self._next_orphan_scan = time.monotonic() + self.heartbeat_seconds
        recovered = 0
        prefix = f"{self.name}:inflight:"
        for key in self.client.scan_iter(match=f"{prefix}*"):
            owner = (key.decode() if isinstance(key, bytes) else key)[len(prefix):]
            if owner == self.consumer_id or self.client.exists(f"{self.name}:alive:{owner}"):
                continue
            moved = self._reclaim(key)
            if moved:
                logger.warning(f"[{self.name}] reclaimed {moved} message(s) from stale consumer {owner}")
            recovered += moved
        return recovered

    def _reclaim(self, inflight_key) -> int:
        # in-flight 왼쪽이 가장 최근 것 → 왼쪽부터 대기 목록 오른쪽 끝(다음 전달 위치)으로 옮기면
        # 가장 오래된 것이 먼저 전달된다. LMOVE 단위로 원자적이라 경쟁 컨슈머와 중복되지 않는다.
        moved = 0
        while (raw := self.client.lmove(inflight_key, self.name, "LEFT", "RIGHT")) is not None:
            self.client.hincrby(self.redelivered_key, _digest(raw), 1)
            moved += 1
        return moved

    def _promote_delayed(self) -> None:
        self.heartbeat()
        if time.monotonic() >= self._next_orphan_scan:
            self.reclaim_orphans()
        due = self.client.zrangebyscore(self.delayed_key, "-inf", time.time())
        for raw in due:
            # ZREM이 성공한 컨슈머만 옮긴다 (경쟁 컨슈머 간 중복 방지)
            if self.client.zrem(self.delayed_key, raw):
                self.client.lpush(self.name, raw)

    def _fetch(self, timeout: float) -> Delivery | None:
        try:
            if timeout > 0:
                raw = self.client.blmove(self.name, self.inflight_key, timeout, "RIGHT", "LEFT")
            else:
                raw = self.client.lmove(self.name, self.inflight_key, "RIGHT", "LEFT")
        except redis.exceptions.ConnectionError as e:
            logger.error(f"[{self.name}] broker connection lost while fetching: {e}")
            time.sleep(self.poll_seconds)
            return None
        if raw is None:
            return None
        redelivered = self.client.hexists(self.redelivered_key, _digest(raw))
        tag = uuid.uuid4().hex
        self._raw_by_tag[tag] = raw
        return Delivery(body=raw, delivery_tag=tag, redelivered=redelivered, _settle=self._settle)

    def _inflight_count(self) -> int:
        return self.client.llen(self.inflight_key)

    def _settle(self, tag: str, ack: bool, requeue: bool) -> None:
        raw = self._raw_by_tag.pop(tag)
        pipe = self.client.pipeline(transaction=True)
        pipe.lrem(self.inflight_key, 1, raw)
        if requeue and not ack:
            pipe.rpush(self.name, raw)
            pipe.hincrby(self.redelivered_key, _digest(raw), 1)
        else:
            pipe.hdel(self.redelivered_key, _digest(raw))
            if not ack:
                pipe.lpush(self.dead_key, raw)
                pipe.ltrim(self.dead_key, 0, DEAD_LETTER_LIMIT - 1)
        pipe.execute()

    # --- 검사용 ---

    def depth(self) -> int:
        return self.client.llen(self.name)

    def dead_letters(self) -> list[bytes]:
        return list(self.client.lrange(self.dead_key, 0, -1))


class RedisBroker:
    """Redis 클라이언트 하나를 공유하는 큐 연결 객체.

    서비스 lifespan이 만들어 app.state에 보관하고, 큐가 필요한 컴포넌트에 넘긴다.
    본문은 bytes로 주고받는다 (decode_responses=False).
    """

    def __init__(
        self,
        client: redis.Redis,
        consumer_id: str,
        poll_seconds: float = 1.0,
        heartbeat_seconds: float = 60.0,
    ):
        self.client = client
        self.consumer_id = consumer_id
        self.poll_seconds = poll_seconds
        self.heartbeat_seconds = heartbeat_seconds
        self._queues: dict[str, RedisWorkQueue] = {}

    @classmethod
    def from_url(
        cls, url: str, consumer_id: str, poll_seconds: float = 1.0, heartbeat_seconds: float = 60.0
    ) -> "RedisBroker":
        client = redis.Redis.from_url(
            url,
            socket_connect_timeout=5,
            health_check_interval=30,
        )
        return cls(client, consumer_id, poll_seconds, heartbeat_seconds)

    def queue(self, name: str) -> RedisWorkQueue:
        if name not in self._queues:
            self._queues[name] = RedisWorkQueue(
                self.client, name, self.consumer_id, self.poll_seconds, self.heartbeat_seconds
            )
        return self._queues[name]

    def ping(self) -> None:
        try:
            self.client.ping()
        except redis.exceptions.RedisError as e:
            raise QueueUnavailable(str(e)) from e

    def close(self) -> None:
        self.client.close()
