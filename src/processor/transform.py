"""이미지 변환 능력: resize → (선택) 워터마크 합성 → WebP 재인코딩.

워커 입장에서는 불투명한 함수 하나다. 여기서 하는 일은 두 가지가 더 있다.

1. 실패 분류: 같은 입력이면 다시 해도 실패할 오류(파일 없음, 디코딩 실패)는
   terminal, 디스크 부족/메모리 부족 같은 자원 문제는 retriable로 표시한
   TransformError로 바꿔 올린다.
2. 데드라인: 변환을 별도 스레드에서 실행하고 timeout이 지나면
   TransformTimeout(terminal)을 올린다. 멈춘 스레드는 강제로 죽일 수 없으므로
   호출마다 새 단일 슬롯 executor를 만들고 기다리지 않고 버린다.
"""

import errno
import os
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass

from loguru import logger
from PIL import Image, UnidentifiedImageError

from core.exceptions import TransformError, TransformTimeout
from processor import operations
from utility.timer import timer

PROCESSED_PREFIX = "processed-"

# 자원이 회복되면 성공할 수 있는 오류
RETRIABLE_ERRNOS = frozenset(
    {errno.ENOSPC, errno.ENOMEM, errno.EMFILE, errno.ENFILE, errno.EAGAIN, errno.EDQUOT, errno.EBUSY}
)


def processed_filename_for(unique_filename: str) -> str:
    """결정적인 결과 파일명. 중복 전달이 같은 경로를 덮어쓰게 된다."""
    return f"{PROCESSED_PREFIX}{unique_filename}"


@dataclass(frozen=True)
class TransformResult:
    processed_filename: str
    processed_path: str
    width: int
    height: int
    elapsed: float


class ImageTransformer:
    def __init__(
        self,
        processed_dir: str,
        resize_width: int = 800,
        webp_quality: int = 80,
        watermark_path: str | None = None,
        watermark_width: int = 150,
        watermark_text: str | None = None,
        timeout_seconds: float | None = 30.0,
    ):
        self.processed_dir = processed_dir
        self.resize_width = resize_width
        self.webp_quality = webp_quality
        self.watermark_width = watermark_width
        self.watermark_text = watermark_text
        self.timeout_seconds = timeout_seconds
        self._overlay: Image.Image | None = None

        if watermark_path:
            if os.path.exists(watermark_path):
                with Image.open(watermark_path) as img:
                    self._overlay = img.convert("RGBA")
            else:
                logger.warning(f"Watermark image not found at {watermark_path}; using text watermark")

    @classmethod
    def from_settings(cls, settings) -> "ImageTransformer":
        return cls(
            processed_dir=settings.processed_dir,
            resize_width=settings.RESIZE_WIDTH,
            webp_quality=settings.WEBP_QUALITY,
            watermark_path=settings.WATERMARK_PATH,
            watermark_width=settings.WATERMARK_WIDTH,
            watermark_text=settings.WATERMARK_TEXT,
            timeout_seconds=settings.TRANSFORM_TIMEOUT_SECONDS,
        )

    def ensure_dirs(self) -> None:
        os.makedirs(self.processed_dir, exist_ok=True)

    def transform(self, source_path: str, unique_filename: str) -> TransformResult:
        """source_path를 변환해 processed_dir/processed-<unique_filename>에 저장한다."""
        if not self.timeout_seconds:
            return self._run(source_path, unique_filename)

        cancelled = threading.Event()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="transform")
        try:
            future = executor.submit(self._run, source_path, unique_filename, cancelled)
            try:
                return future.result(timeout=self.timeout_seconds)
            except FutureTimeout:
                # 멈출 수 없는 스레드는 버리되 결과 파일은 남기지 못하게 한다
                cancelled.set()
                raise TransformTimeout(self.timeout_seconds) from None
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _run(
        self, source_path: str, unique_filename: str, cancelled: threading.Event | None = None
    ) -> TransformResult:
        filename = processed_filename_for(unique_filename)
        dest = os.path.join(self.processed_dir, filename)
        try:
            with timer(f"transform {unique_filename}") as t:
                with Image.open(source_path) as img:
                    img.load()
                    result = self._apply(img)
                self._save_atomic(result, dest, cancelled)
        except TransformError:
            raise
        except Exception as e:
            raise classify(e) from e

        return TransformResult(
            processed_filename=filename,
            processed_path=dest,
            width=result.width,
            height=result.height,
            elapsed=t.elapsed,
        )

    def _apply(self, img: Image.Image) -> Image.Image:
        result = operations.resize_to_width(img.convert("RGBA"), self.resize_width)
        if self._overlay is not None:
            result = operations.composite_overlay(result, self._overlay, self.watermark_width)
        elif self.watermark_text:
            result = operations.watermark(result, self.watermark_text)
        return result

    def _save_atomic(self, image: Image.Image, dest: str, cancelled: threading.Event | None = None) -> None:
        # 임시 파일에 쓰고 rename → 중간 상태 파일이 결과 경로에 보이지 않는다
        tmp = f"{dest}.{uuid.uuid4().hex}.tmp"
        try:
            image.save(tmp, "WEBP", quality=self.webp_quality)
            if cancelled is not None and cancelled.is_set():
                logger.warning(f"Discarding output for {os.path.basename(dest)}: deadline already expired")
                raise TransformError("Transformation cancelled after deadline")
            os.replace(tmp, dest)
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)


def classify(exc: Exception) -> TransformError:
    """변환 중 발생한 예외를 retriable / terminal TransformError로 바꾼다."""
    if isinstance(exc, FileNotFoundError):
        return TransformError(f"Source file not found: {exc.filename}")
    if isinstance(exc, (UnidentifiedImageError, Image.DecompressionBombError, SyntaxError, ValueError)):
        return TransformError(f"Cannot decode image: {exc}")
    if isinstance(exc, MemoryError):
        return TransformError("Out of memory during transformation", retriable=True)
    if isinstance(exc, OSError) and exc.errno in RETRIABLE_ERRNOS:
        return TransformError(f"Transient resource error: {exc}", retriable=True)
    return TransformError(str(exc) or exc.__class__.__name__)
