"""전역 예외 핸들러.

API 계층에서 새는 예외를 {"error_code", "message"} JSON으로 바꾼다.
    AppException  → 예외에 지정된 status_code/error_code
    PipelineError → 503 (상태 저장소/브로커 장애는 재시도하면 풀릴 수 있다)
main.py에서 app.add_exception_handler()로 등록한다.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger

from core.exceptions import AppException, PipelineError


def _error(status_code: int, error_code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error_code": error_code, "message": message},
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} | {exc.error_code}: {exc.message}")
    return _error(exc.status_code, exc.error_code, exc.message)


async def pipeline_exception_handler(request: Request, exc: PipelineError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} | {type(exc).__name__}: {exc}")
    return _error(503, "SERVICE_UNAVAILABLE", "일시적으로 요청을 처리할 수 없습니다")
