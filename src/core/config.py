import os
import socket

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # 앱 설정
    APP_NAME: str = "imagepipe"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # 서버 설정 (gateway 5000, worker 5001, notifier 5002 권장)
    HOST: str = "0.0.0.0"
    PORT: int = 5000

    # 상태 저장소
    DATABASE_URL: str = "sqlite:///./imagepipe.db"

    # 큐 설정
    QUEUE_BACKEND: str = "redis"  # redis | memory
    REDIS_URL: str = "redis://localhost:6379/0"
    TASK_QUEUE: str = "image_processing_queue"
    NOTIFICATION_QUEUE: str = "image_processing_notifications"
    # 같은 호스트의 여러 워커 프로세스가 in-flight 목록을 공유하지 않도록 pid를 붙인다
    CONSUMER_ID: str = Field(default_factory=lambda: f"{socket.gethostname()}-{os.getpid()}")
    # heartbeat가 이 시간 동안 갱신되지 않은 컨슈머의 in-flight 메시지는 다른 컨슈머가 회수한다.
    # 메시지 하나의 최대 처리 시간(TRANSFORM_TIMEOUT_SECONDS)보다 길어야 한다.
    CONSUMER_HEARTBEAT_SECONDS: float = 60.0
    WORKER_PREFETCH: int = 1
    QUEUE_POLL_SECONDS: float = 1.0

    # 공유 스토리지 경로
    STORAGE_DIR: str = "/app/images"

    # 업로드 제한
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024
    ALLOWED_MIME_TYPES: list[str] = ["image/jpeg", "image/png", "image/gif", "image/webp"]

    # 변환 설정
    WATERMARK_PATH: str | None = None
    WATERMARK_TEXT: str = "imagepipe"
    RESIZE_WIDTH: int = 800
    WATERMARK_WIDTH: int = 150
    WEBP_QUALITY: int = 80
    TRANSFORM_TIMEOUT_SECONDS: float = 30.0

    # 재시도 정책 (일시적 실패만 해당)
    MAX_ATTEMPTS: int = 3
    RETRY_BACKOFF_SECONDS: float = 5.0
    RETRY_BACKOFF_MAX_SECONDS: float = 60.0

    # 알림 설정
    NOTIFY_WEBHOOK_URLS: list[str] = []
    NOTIFY_WEBHOOK_TIMEOUT_SECONDS: float = 5.0
    NOTIFY_DEDUP_SIZE: int = 1024

    # outbox relay 주기
    OUTBOX_RELAY_INTERVAL_SECONDS: float = 5.0

    @property
    def original_dir(self) -> str:
        return os.path.join(self.STORAGE_DIR, "original")

    @property
    def processed_dir(self) -> str:
        return os.path.join(self.STORAGE_DIR, "processed")

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
