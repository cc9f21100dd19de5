"""Work Queue 공통 계약.

- enqueue(body, durable=True, delay=0): 메시지를 큐에 넣는다.
- consume(handler, max_in_flight=N): 전달 루프. handler는 Delivery를 받아
  직접 ack() 또는 reject(requeue)를 호출한다.

보장 사항:
- ack 전까지 메시지는 큐(또는 컨슈머 세션의 in-flight 목록)에 남아 있다.
- 한 컨슈머 세션이 동시에 쥐고 있는 미확인 메시지는 max_in_flight 이하.
- 컨슈머가 죽거나 reject(requeue=True)하면 재전달된다.
- reject(requeue=False)된 메시지는 다시 전달되지 않는다 (dead 목록에만 남음).
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Protocol

from loguru import logger


@dataclass(eq=False)
class Delivery:
    """컨슈머에게 전달된 메시지 한 건."""

    body: bytes
    delivery_tag: str
    redelivered: bool = False
    _settle: Callable[[str, bool, bool], None] = field(default=None, repr=False)
    settled: bool = False

    def ack(self) -> None:
        self._finish(ack=True, requeue=False)

    def reject(self, requeue: bool = False) -> None:
        self._finish(ack=False, requeue=requeue)

    def _finish(self, ack: bool, requeue: bool) -> None:
        if self.settled:
            raise RuntimeError(f"delivery {self.delivery_tag} already settled")
        self._settle(self.delivery_tag, ack, requeue)
        self.settled = True


Handler = Callable[[Delivery], None]


class WorkQueue(Protocol):
    name: str

    def enqueue(self, body: bytes, durable: bool = True, delay: float = 0) -> None: ...

    def consume(
        self,
        handler: Handler,
        max_in_flight: int = 1,
        stop: threading.Event | None = None,
        drain: bool = False,
    ) -> int: ...

    def ping(self) -> None: ...


class ConsumingQueue:
    """전달 루프 공통 구현. 하위 클래스는 저장 방식(_fetch/_settle 등)만 구현한다."""

    name: str
    poll_seconds: float = 1.0

    # --- 하위 클래스 구현 ---

    def _recover(self) -> int:
        """이전 세션이 남긴 in-flight 메시지를 큐로 되돌린다."""
        raise NotImplementedError

    def _promote_delayed(self) -> None:
        raise NotImplementedError

    def _fetch(self, timeout: float) -> Delivery | None:
        raise NotImplementedError

    def _inflight_count(self) -> int:
        raise NotImplementedError

    # --- 전달 루프 ---

    def consume(
        self,
        handler: Handler,
        max_in_flight: int = 1,
        stop: threading.Event | None = None,
        drain: bool = False,
    ) -> int:
        """stop이 설정될 때까지 메시지를 하나씩 handler에 넘긴다.

        max_in_flight만큼 미리 가져오고(prefetch), 처리는 항상 순차적이다.
        drain=True이면 큐가 비는 순간 반환한다 (테스트/일회성 실행용).
        반환값은 처리한 메시지 수.
        """
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        stop = stop or threading.Event()

        recovered = self._recover()
        if recovered:
            logger.warning(f"[{self.name}] requeued {recovered} unacknowledged message(s) from a previous session")
        logger.info(f"[*] Waiting for messages in {self.name} (max_in_flight={max_in_flight})")

        buffer: deque[Delivery] = deque()
        handled = 0
        while not stop.is_set():
            self._promote_delayed()
            while self._inflight_count() < max_in_flight:
                timeout = 0 if (buffer or drain) else self.poll_seconds
                delivery = self._fetch(timeout)
                if delivery is None:
                    break
                buffer.append(delivery)

            if not buffer:
                if drain:
                    break
                continue

            delivery = buffer.popleft()
            self._dispatch(handler, delivery)
            handled += 1

        # 가져왔지만 처리하지 못한 메시지는 돌려놓는다. requeue는 큐 맨 앞에 넣으므로
        # 뒤에서부터 돌려놓아야 원래 순서가 유지된다.
        while buffer:
            buffer.pop().reject(requeue=True)
        return handled

    def _dispatch(self, handler: Handler, delivery: Delivery) -> None:
        try:
            handler(delivery)
        except Exception:
            # 핸들러가 잡지 못한 예외 → poison loop 방지를 위해 requeue하지 않는다
            logger.exception(f"[{self.name}] unhandled error in consumer handler")
            if not delivery.settled:
                delivery.reject(requeue=False)
            return
        if not delivery.settled:
            logger.warning(f"[{self.name}] handler returned without ack/reject; requeueing {delivery.delivery_tag}")
            delivery.reject(requeue=True)
