"""처리 시간 측정 유틸리티."""

import time
from contextlib import contextmanager

from loguru import logger


@contextmanager
def timer(label: str = ""):
    """컨텍스트 매니저: 블록 실행 시간을 측정한다.

    사용법:
        with timer("transform abc.jpg") as t:
            ...
        print(t.elapsed)

    블록이 예외로 끝나면 소요 시간만 기록하고 로그는 남기지 않는다.
    """
    t = _TimerResult()
    start = time.perf_counter()
    try:
        yield t
    finally:
        t.elapsed = time.perf_counter() - start
    if label:
        logger.debug(f"[{label}] {t.elapsed:.3f}s")


class _TimerResult:
    elapsed: float = 0.0
