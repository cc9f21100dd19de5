"""pytest 공용 fixture.

모든 테스트는 in-memory SQLite 상태 저장소와 InMemoryBroker를 사용하여 격리된다.
- settings: tmp_path를 공유 스토리지로 쓰는 설정
- store: 테이블이 만들어진 StateStore
- clock / broker: 지연 재전달을 시험하기 위한 가짜 시계 + 메모리 브로커
- worker: 실제 Pillow 변환기를 쓰는 ProcessingWorker
- make_pending: 원본 파일 + pending 레코드 + Task Envelope 생성기
"""

import os
import sys
from pathlib import Path

import pytest
from PIL import Image

# src/ 디렉토리를 import path에 추가
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from core.config import Settings
from messaging.memory import InMemoryBroker
from model.envelope import TaskEnvelope
from model.image import ImageRecord
from processor.transform import ImageTransformer
from service.state_store import connect_state_store
from worker.consumer import ProcessingWorker


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def write_image(path: str, size: tuple[int, int] = (1000, 500), color: str = "blue", fmt: str = "JPEG"):
    """테스트용 이미지를 디스크에 만든다."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    Image.new("RGB", size, color=color).save(path, format=fmt)
    return path


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        _env_file=None,
        STORAGE_DIR=str(tmp_path / "images"),
        DATABASE_URL="sqlite://",
        QUEUE_BACKEND="memory",
        WATERMARK_PATH=None,
        WATERMARK_TEXT="test",
        TRANSFORM_TIMEOUT_SECONDS=10,
        MAX_ATTEMPTS=3,
        RETRY_BACKOFF_SECONDS=2,
        RETRY_BACKOFF_MAX_SECONDS=60,
        OUTBOX_RELAY_INTERVAL_SECONDS=60,
        QUEUE_POLL_SECONDS=0.01,
    )


@pytest.fixture()
def store():
    """테스트마다 새 in-memory SQLite 상태 저장소."""
    return connect_state_store("sqlite://")


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def broker(clock):
    return InMemoryBroker(poll_seconds=0.01, clock=clock)


@pytest.fixture()
def task_queue(broker, settings):
    return broker.queue(settings.TASK_QUEUE)


@pytest.fixture()
def notification_queue(broker, settings):
    return broker.queue(settings.NOTIFICATION_QUEUE)


@pytest.fixture()
def transformer(settings):
    t = ImageTransformer.from_settings(settings)
    t.ensure_dirs()
    return t


@pytest.fixture()
def worker(settings, store, transformer, task_queue, notification_queue):
    return ProcessingWorker(
        store=store,
        transformer=transformer,
        task_queue=task_queue,
        notification_queue=notification_queue,
        original_dir=settings.original_dir,
        max_attempts=settings.MAX_ATTEMPTS,
        retry_backoff=settings.RETRY_BACKOFF_SECONDS,
        retry_backoff_max=settings.RETRY_BACKOFF_MAX_SECONDS,
    )


@pytest.fixture()
def make_pending(settings, store):
    """원본 파일을 쓰고 pending 레코드를 만든 뒤 해당 Task Envelope를 반환한다."""

    def _make(image_id: str = "i1", unique_filename: str = "u1.jpg", content: bytes | None = None):
        path = os.path.join(settings.original_dir, unique_filename)
        if content is None:
            write_image(path)
        else:
            os.makedirs(settings.original_dir, exist_ok=True)
            with open(path, "wb") as f:
                f.write(content)
        store.create(
            ImageRecord(
                id=image_id,
                unique_filename=unique_filename,
                original_filename="photo.jpg",
                mime_type="image/jpeg",
                size=os.path.getsize(path),
            )
        )
        return TaskEnvelope(image_id=image_id, unique_filename=unique_filename, original_path=path)

    return _make
