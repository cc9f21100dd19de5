"""서비스 lifespan에서 컨슈머 루프를 백그라운드 스레드로 돌리는 래퍼."""

import threading

from loguru import logger

from messaging.base import Handler


class BackgroundConsumer:
    """queue.consume(handler)를 전용 스레드 하나에서 실행한다.

    메시지 처리는 이 스레드에서만 순차적으로 일어난다.
    HTTP 서버(헬스체크)는 메인 이벤트 루프에서 따로 돈다.
    """

    def __init__(self, queue, handler: Handler, max_in_flight: int = 1, name: str | None = None):
        self.queue = queue
        self.handler = handler
        self.max_in_flight = max_in_flight
        self.stop_event = threading.Event()
        self.handled = 0
        self.error: BaseException | None = None
        self._thread = threading.Thread(
            target=self._run, name=name or f"consumer-{queue.name}", daemon=True
        )

    def _run(self) -> None:
        try:
            self.handled = self.queue.consume(
                self.handler, max_in_flight=self.max_in_flight, stop=self.stop_event
            )
        except Exception as e:
            self.error = e
            logger.exception(f"Consumer loop for {self.queue.name} crashed")
        else:
            logger.info(f"Consumer loop for {self.queue.name} stopped after {self.handled} message(s)")

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: float = 10.0) -> None:
        self.stop_event.set()
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning(f"Consumer for {self.queue.name} did not stop within {timeout:g}s")

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def check(self) -> None:
        """헬스체크용. 스레드가 죽었으면 예외."""
        if not self.is_alive():
            raise RuntimeError(f"consumer for {self.queue.name} is not running")
