import time

from fastapi import Request, Response
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

SLOW_THRESHOLD_MS = 500
QUIET_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """모든 HTTP 요청을 로깅하는 미들웨어.

    기록 항목: 메서드, 경로, 클라이언트 IP, 상태코드, 처리시간(ms)
    처리시간이 500ms를 초과하면 WARNING, 5xx는 ERROR 레벨로 기록.
    오케스트레이터가 주기적으로 호출하는 /health는 정상일 때 DEBUG로 기록.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - start) * 1000
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path
        status = response.status_code
        line = f"{request.method} {path} | {client_ip} | {status} | {elapsed_ms:.0f}ms"

        if status >= 500:
            logger.error(line)
        elif elapsed_ms > SLOW_THRESHOLD_MS:
            logger.warning(f"{line} (slow)")
        elif path in QUIET_PATHS:
            logger.debug(line)
        else:
            logger.info(line)

        return response
