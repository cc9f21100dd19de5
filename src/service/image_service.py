import os
import uuid

from fastapi import UploadFile
from loguru import logger

from core.config import Settings
from core.exceptions import EnqueueFailed, InvalidUpload, StateStoreError, UploadTooLarge
from model.envelope import TaskEnvelope
from model.image import ImageRecord, OutboxEntry
from service.outbox import OutboxRelay
from service.state_store import StateStore


def save_upload(
    file: UploadFile,
    settings: Settings,
    store: StateStore,
    relay: OutboxRelay,
) -> ImageRecord:
    """업로드 파일을 저장하고 pending 레코드 + Task 발행을 예약한다.

    1. MIME 타입, 크기 검증
    2. <uuid><확장자> 이름으로 original 디렉토리에 저장
    3. 레코드와 outbox 항목을 한 트랜잭션으로 저장
    4. relay로 즉시 발행 시도 (실패해도 outbox에 남아 relay가 다시 보낸다)
    """
    if file.content_type not in settings.ALLOWED_MIME_TYPES:
        raise InvalidUpload

    data = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise UploadTooLarge(f"업로드 파일은 {settings.MAX_UPLOAD_BYTES} 바이트 이하여야 합니다")
    if not data:
        raise InvalidUpload("빈 파일은 업로드할 수 없습니다")

    os.makedirs(settings.original_dir, exist_ok=True)
    original_filename = file.filename or "image"
    ext = os.path.splitext(original_filename)[1].lower()
    unique_filename = f"{uuid.uuid4()}{ext}"
    saved_path = os.path.join(settings.original_dir, unique_filename)

    with open(saved_path, "wb") as f:
        f.write(data)

    image_id = uuid.uuid4().hex
    task = TaskEnvelope(
        image_id=image_id,
        unique_filename=unique_filename,
        original_path=saved_path,
    )
    record = ImageRecord(
        id=image_id,
        unique_filename=unique_filename,
        original_filename=original_filename,
        mime_type=file.content_type,
        size=len(data),
    )
    try:
        record = store.create(
            record,
            outbox=[
                OutboxEntry(
                    image_id=image_id,
                    queue=settings.TASK_QUEUE,
                    payload=task.encode().decode("utf-8"),
                )
            ],
        )
    except StateStoreError as e:
        logger.error(f"Error saving image metadata for {unique_filename}: {e}")
        os.remove(saved_path)
        raise EnqueueFailed from e
    logger.info(f"Image saved to DB: {record.id}")

    try:
        relay.flush()
    except Exception as e:
        logger.warning(f"Immediate publish failed for image {record.id}; outbox relay will retry: {e}")
    return record


def get_status(image_id: str, store: StateStore) -> dict:
    return store.status_view(image_id)
