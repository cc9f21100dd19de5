"""Image Processor Service.

TASK_QUEUE를 소비하는 ProcessingWorker를 백그라운드 스레드 하나에서 돌리고,
HTTP는 헬스체크만 제공한다. 수평 확장은 이 프로세스를 여러 개 띄워서 한다
(competing consumers). 프로세스마다 CONSUMER_ID가 달라야 한다.

실행:
    cd src && uvicorn worker.app:app --port 5001
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from loguru import logger

from core.config import Settings, settings
from core.lifespan import close_dependencies, connect_dependencies
from core.middleware import RequestLoggingMiddleware
from messaging.runner import BackgroundConsumer
from processor.transform import ImageTransformer
from router.health_router import router as health_router
from utility.logger import setup_logger
from worker.consumer import ProcessingWorker

SERVICE_NAME = "Image Processor Service"


def build_worker(app_settings: Settings, store, broker, transformer=None) -> ProcessingWorker:
    transformer = transformer or ImageTransformer.from_settings(app_settings)
    transformer.ensure_dirs()
    return ProcessingWorker(
        store=store,
        transformer=transformer,
        task_queue=broker.queue(app_settings.TASK_QUEUE),
        notification_queue=broker.queue(app_settings.NOTIFICATION_QUEUE),
        original_dir=app_settings.original_dir,
        max_attempts=app_settings.MAX_ATTEMPTS,
        retry_backoff=app_settings.RETRY_BACKOFF_SECONDS,
        retry_backoff_max=app_settings.RETRY_BACKOFF_MAX_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # === 시작 ===
    app_settings = app.state.settings
    setup_logger(app_settings.LOG_LEVEL, service=SERVICE_NAME)
    logger.info(f"{SERVICE_NAME} v{app_settings.APP_VERSION} (consumer={app_settings.CONSUMER_ID})")

    connect_dependencies(app)
    store, broker = app.state.store, app.state.broker

    worker = build_worker(app_settings, store, broker, transformer=app.state.transformer)
    consumer = BackgroundConsumer(
        broker.queue(app_settings.TASK_QUEUE),
        worker.handle,
        max_in_flight=app_settings.WORKER_PREFETCH,
    )
    consumer.start()
    app.state.worker = worker
    app.state.consumer = consumer
    app.state.health_checks = {
        "database": store.ping,
        "queue": broker.ping,
        "consumer": consumer.check,
    }

    yield

    # === 종료 ===
    logger.info("Shutting down")
    consumer.stop()
    close_dependencies(app)


def create_app(app_settings: Settings | None = None, store=None, broker=None, transformer=None) -> FastAPI:
    app = FastAPI(title=SERVICE_NAME, version=(app_settings or settings).APP_VERSION, lifespan=lifespan)
    app.state.settings = app_settings or settings
    app.state.service_name = SERVICE_NAME
    app.state.store = store
    app.state.broker = broker
    app.state.transformer = transformer
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(health_router)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("worker.app:app", host=settings.HOST, port=settings.PORT, access_log=False)
