"""Notification Service.

NOTIFICATION_QUEUE의 Event Envelope를 구독자(로그, webhook)에게 전달한다.

실행:
    cd src && uvicorn notifier.app:app --port 5002
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from loguru import logger

from core.config import Settings, settings
from core.lifespan import close_dependencies, connect_dependencies
from core.middleware import RequestLoggingMiddleware
from messaging.runner import BackgroundConsumer
from notifier.fanout import NotificationFanout
from notifier.subscribers import build_subscribers
from router.health_router import router as health_router
from utility.logger import setup_logger

SERVICE_NAME = "Notification Service"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # === 시작 ===
    app_settings = app.state.settings
    setup_logger(app_settings.LOG_LEVEL, service=SERVICE_NAME)
    logger.info(f"{SERVICE_NAME} v{app_settings.APP_VERSION}")

    connect_dependencies(app, with_store=False)
    broker = app.state.broker

    subscribers = app.state.subscribers or build_subscribers(app_settings)
    fanout = NotificationFanout(subscribers, dedup_size=app_settings.NOTIFY_DEDUP_SIZE)
    consumer = BackgroundConsumer(broker.queue(app_settings.NOTIFICATION_QUEUE), fanout.handle)
    consumer.start()
    app.state.fanout = fanout
    app.state.consumer = consumer
    app.state.health_checks = {"queue": broker.ping, "consumer": consumer.check}

    yield

    # === 종료 ===
    logger.info("Shutting down")
    consumer.stop()
    for subscriber in subscribers:
        close = getattr(subscriber, "close", None)
        if close is not None:
            close()
    close_dependencies(app)


def create_app(app_settings: Settings | None = None, broker=None, subscribers=None) -> FastAPI:
    app = FastAPI(title=SERVICE_NAME, version=(app_settings or settings).APP_VERSION, lifespan=lifespan)
    app.state.settings = app_settings or settings
    app.state.service_name = SERVICE_NAME
    app.state.broker = broker
    app.state.subscribers = subscribers
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(health_router)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("notifier.app:app", host=settings.HOST, port=settings.PORT, access_log=False)
