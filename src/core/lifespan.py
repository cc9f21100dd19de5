"""서비스 lifespan (컴포지션 루트).

시작 시 상태 저장소와 브로커 연결을 만들고 확인한다. 하나라도 실패하면 예외를
올려 uvicorn이 시작을 중단하게 한다 (반쯤 초기화된 채로 뜨지 않는다).
연결 객체는 app.state에 보관하고 컴포넌트에 명시적으로 넘긴다.
테스트는 create_app(store=..., broker=...)로 가짜 연결을 주입할 수 있다.
"""

import os
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from core.exceptions import PipelineError
from messaging.connection import connect_broker
from service.outbox import OutboxRelay
from service.state_store import connect_state_store
from utility.logger import setup_logger


def connect_dependencies(app: FastAPI, with_store: bool = True) -> None:
    """app.state에 store/broker가 없으면 설정으로 연결한다. 실패 시 예외."""
    settings = app.state.settings
    try:
        if with_store and getattr(app.state, "store", None) is None:
            app.state.store = connect_state_store(settings.DATABASE_URL, echo=settings.DEBUG)
        if getattr(app.state, "broker", None) is None:
            app.state.broker = connect_broker(settings)
    except PipelineError as e:
        logger.error(f"Failed to start {app.state.service_name}: {e}")
        raise


def close_dependencies(app: FastAPI) -> None:
    broker = getattr(app.state, "broker", None)
    if broker is not None:
        logger.info("Closing broker connection...")
        broker.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # === 시작 ===
    settings = app.state.settings
    setup_logger(settings.LOG_LEVEL, service=app.state.service_name)
    logger.info(f"{app.state.service_name} v{settings.APP_VERSION}")

    os.makedirs(settings.original_dir, exist_ok=True)
    os.makedirs(settings.processed_dir, exist_ok=True)

    connect_dependencies(app)
    store, broker = app.state.store, app.state.broker

    relay = OutboxRelay(store, broker)
    app.state.relay = relay
    stop = threading.Event()
    relay_thread = threading.Thread(
        target=relay.run,
        args=(stop, settings.OUTBOX_RELAY_INTERVAL_SECONDS),
        name="outbox-relay",
        daemon=True,
    )
    relay_thread.start()

    app.state.health_checks = {"database": store.ping, "queue": broker.ping}
    logger.info(f"{app.state.service_name} ready")

    yield

    # === 종료 ===
    logger.info("Shutting down")
    stop.set()
    relay_thread.join(timeout=5)
    close_dependencies(app)
