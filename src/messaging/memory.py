"""
In-memory Work Queue.

단일 프로세스 개발/테스트용. 전달/확인 규칙은 RedisWorkQueue와 같다.

Limitations:
- 프로세스가 끝나면 메시지가 사라진다 (durable 플래그는 무시)
- 여러 프로세스 간 공유 불가
"""

import threading
import time
import uuid
from collections import deque
from typing import Callable

from messaging.base import ConsumingQueue, Delivery


class InMemoryWorkQueue(ConsumingQueue):
    def __init__(
        self,
        name: str,
        poll_seconds: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.poll_seconds = poll_seconds
        self._clock = clock
        self._cond = threading.Condition()
        # (tag, body, redelivered)
        self._ready: deque[tuple[str, bytes, bool]] = deque()
        self._inflight: dict[str, tuple[bytes, bool]] = {}
        self._delayed: list[tuple[float, str, bytes]] = []
        self.dead: list[bytes] = []

    def enqueue(self, body: bytes, durable: bool = True, delay: float = 0) -> None:
        tag = uuid.uuid4().hex
        with self._cond:
            if delay > 0:
                self._delayed.append((self._clock() + delay, tag, body))
            else:
                self._ready.append((tag, body, False))
                self._cond.notify()

    def ping(self) -> None:
        return None

    # --- 검사용 ---

    def pending(self) -> list[bytes]:
        with self._cond:
            return [body for _, body, _ in self._ready]

    def delayed(self) -> list[tuple[float, bytes]]:
        with self._cond:
            return [(ready_at, body) for ready_at, _, body in self._delayed]

    def __len__(self) -> int:
        with self._cond:
            return len(self._ready) + len(self._delayed)

    # --- ConsumingQueue 구현 ---

    def _recover(self) -> int:
        with self._cond:
            leftovers = list(self._inflight.items())
            self._inflight.clear()
            for tag, (body, _) in reversed(leftovers):
                self._ready.appendleft((tag, body, True))
            return len(leftovers)

    def _promote_delayed(self) -> None:
        now = self._clock()
        with self._cond:
            due = [d for d in self._delayed if d[0] <= now]
            if not due:
                return
            self._delayed = [d for d in self._delayed if d[0] > now]
            for _, tag, body in sorted(due):
                self._ready.append((tag, body, False))
            self._cond.notify_all()

    def _fetch(self, timeout: float) -> Delivery | None:
        with self._cond:
            if not self._ready and timeout > 0:
                self._cond.wait(timeout)
            if not self._ready:
                return None
            tag, body, redelivered = self._ready.popleft()
            self._inflight[tag] = (body, redelivered)
        return Delivery(body=body, delivery_tag=tag, redelivered=redelivered, _settle=self._settle)

    def _inflight_count(self) -> int:
        with self._cond:
            return len(self._inflight)

    def _settle(self, tag: str, ack: bool, requeue: bool) -> None:
        with self._cond:
            body, _ = self._inflight.pop(tag)
            if ack:
                return
            if requeue:
                # 같은 세션에서 다음 차례로 다시 전달된다
                self._ready.appendleft((tag, body, True))
                self._cond.notify()
            else:
                self.dead.append(body)


class InMemoryBroker:
    """이름별 InMemoryWorkQueue를 보관하는 연결 객체."""

    def __init__(self, poll_seconds: float = 0.1, clock: Callable[[], float] = time.monotonic):
        self.poll_seconds = poll_seconds
        self.clock = clock
        self._queues: dict[str, InMemoryWorkQueue] = {}
        self._lock = threading.Lock()

    def queue(self, name: str) -> InMemoryWorkQueue:
        with self._lock:
            if name not in self._queues:
                self._queues[name] = InMemoryWorkQueue(name, self.poll_seconds, self.clock)
            return self._queues[name]

    def ping(self) -> None:
        return None

    def close(self) -> None:
        return None
