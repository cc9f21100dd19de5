from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import JSONResponse

from core.config import Settings
from core.dependencies import get_outbox_relay, get_settings, get_state_store
from service import image_service
from service.outbox import OutboxRelay
from service.state_store import StateStore

router = APIRouter(prefix="/api/images", tags=["images"])


@router.post("/upload", status_code=status.HTTP_202_ACCEPTED)
def upload_image(
    image: UploadFile = File(...),
    settings: Settings = Depends(get_settings),
    store: StateStore = Depends(get_state_store),
    relay: OutboxRelay = Depends(get_outbox_relay),
):
    """이미지 업로드 → 202. 처리는 워커가 비동기로 진행한다."""
    record = image_service.save_upload(image, settings, store, relay)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={
            "message": "Image uploaded successfully and queued for processing.",
            "id": record.id,
            "status": record.status,
            "originalFilename": record.original_filename,
        },
    )


@router.get("/{image_id}")
def get_image_status(image_id: str, store: StateStore = Depends(get_state_store)):
    """처리 상태 조회. 없는 id면 404 IMAGE_NOT_FOUND."""
    return image_service.get_status(image_id, store)
