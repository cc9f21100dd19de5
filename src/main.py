"""Ingestion Gateway: 업로드 접수, 상태 조회, 헬스체크."""

import uvicorn
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from core.config import Settings, settings
from core.error_handlers import app_exception_handler, pipeline_exception_handler
from core.exceptions import AppException, PipelineError
from core.lifespan import lifespan
from core.middleware import RequestLoggingMiddleware
from router.health_router import router as health_router
from router.image_router import router as image_router

SERVICE_NAME = "Image Upload Service"


def create_app(app_settings: Settings | None = None, store=None, broker=None) -> FastAPI:
    app_settings = app_settings or settings
    app = FastAPI(
        title=SERVICE_NAME,
        version=app_settings.APP_VERSION,
        description="이미지 업로드를 받아 처리 대기열에 넣고 상태를 조회한다",
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.service_name = SERVICE_NAME
    app.state.store = store
    app.state.broker = broker

    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(PipelineError, pipeline_exception_handler)

    app.include_router(health_router)
    app.include_router(image_router)
    app.mount(
        "/images/processed",
        StaticFiles(directory=app_settings.processed_dir, check_dir=False),
        name="processed",
    )
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        access_log=False,
    )
