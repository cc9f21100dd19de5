"""FastAPI 의존성.

연결 객체(상태 저장소, 브로커, outbox relay)는 lifespan이 만들어 app.state에
보관한다. 라우터는 전역 변수 대신 여기서 꺼내 쓴다.
"""

from fastapi import Request

from core.config import Settings
from service.outbox import OutboxRelay
from service.state_store import StateStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_state_store(request: Request) -> StateStore:
    return request.app.state.store


def get_outbox_relay(request: Request) -> OutboxRelay:
    return request.app.state.relay
