"""서비스 공통 헬스체크.

각 서비스의 lifespan이 app.state.health_checks에 {이름: 확인 함수}를 등록한다.
확인 함수는 정상이면 아무것도 반환하지 않고, 비정상이면 예외를 올린다.
오케스트레이션 계층이 이 응답으로 트래픽/재시작을 결정하므로 형식을 유지한다.

    200 {"status": "<service> is healthy", "<dep>": "connected", ...}
    503 {"status": "<service> is unhealthy", "errors": ["<dep> disconnected", ...]}
"""

from typing import Callable

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from loguru import logger

router = APIRouter(tags=["health"])


def check_dependencies(checks: dict[str, Callable[[], None]]) -> tuple[dict, list[str]]:
    states: dict[str, str] = {}
    errors: list[str] = []
    for name, check in checks.items():
        try:
            check()
        except Exception as e:
            logger.warning(f"Health check '{name}' failed: {e}")
            states[name] = "disconnected"
            errors.append(f"{name} disconnected")
        else:
            states[name] = "connected"
    return states, errors


@router.get("/health")
def health(request: Request):
    service = getattr(request.app.state, "service_name", request.app.title)
    checks = getattr(request.app.state, "health_checks", None)
    if not checks:
        return JSONResponse(
            status_code=503,
            content={"status": f"{service} is unhealthy", "errors": ["service not initialized"]},
        )

    states, errors = check_dependencies(checks)
    if errors:
        return JSONResponse(
            status_code=503,
            content={"status": f"{service} is unhealthy", "errors": errors},
        )
    return {"status": f"{service} is healthy", **states}
