"""Processing Worker: 파이프라인 상태 머신.

메시지 한 건의 처리 순서:
1. Task Envelope 디코딩. 실패 → reject(requeue=False) 후 폐기
2. 레코드 조회. 없으면 오래되었거나 중복된 작업 → ack 후 폐기
   이미 종료 상태면 "중복 전달" 로그 한 줄만 남기고 ack
3. status=processing 기록 (변환 시작 전에 커밋)
4. 변환 실행 (processed-<uniqueFilename>)
5. 성공 → status=completed 기록 → ack → 완료 이벤트 발행
6. 실패 → 일시적 실패면 지연 재전달(시도 횟수 제한), 아니면
   status=failed 기록 → reject(requeue=False) → 실패 이벤트 발행
7. 그 밖의 예외(상태 저장소 쓰기 실패 등) → reject(requeue=False)

ack는 항상 상태 기록이 커밋된 뒤에 호출한다. 이벤트 발행은 best-effort이며
ack 뒤에 둔다.
"""

import os

from loguru import logger

from core.exceptions import (
    ImageNotFound,
    InvalidTransition,
    MalformedMessage,
    StateStoreError,
    TransformError,
)
from messaging.base import Delivery, WorkQueue
from model.envelope import EventEnvelope, TaskEnvelope
from model.image import ImageStatus, LogLevel
from processor.transform import ImageTransformer, TransformResult
from service.state_store import StateStore

PROCESSED_URL_PREFIX = "/images/processed/"


class ProcessingWorker:
    def __init__(
        self,
        store: StateStore,
        transformer: ImageTransformer,
        task_queue: WorkQueue,
        notification_queue: WorkQueue,
        original_dir: str | None = None,
        max_attempts: int = 3,
        retry_backoff: float = 5.0,
        retry_backoff_max: float = 60.0,
    ):
        self.store = store
        self.transformer = transformer
        self.task_queue = task_queue
        self.notification_queue = notification_queue
        self.original_dir = original_dir
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff = retry_backoff
        self.retry_backoff_max = retry_backoff_max

    def handle(self, delivery: Delivery) -> None:
        try:
            task = TaskEnvelope.decode(delivery.body)
        except MalformedMessage as e:
            logger.error(f"Malformed task message dropped ({delivery.delivery_tag}): {e}")
            delivery.reject(requeue=False)
            return

        logger.info(
            f"[x] Received task for image {task.image_id} ({task.unique_filename}, "
            f"attempt {task.attempt + 1}, redelivered={delivery.redelivered})"
        )
        try:
            self._process(task, delivery)
        except ImageNotFound:
            logger.info(f"Image {task.image_id} disappeared during processing; task acknowledged")
            if not delivery.settled:
                delivery.ack()
        except StateStoreError as e:
            logger.error(f"[persistence failure] image {task.image_id}: {e}; message rejected without requeue")
            self._reject_if_open(delivery)
        except Exception as e:
            logger.opt(exception=e).error(
                f"[unexpected error] image {task.image_id}: {e}; message rejected without requeue"
            )
            self._reject_if_open(delivery)

    def retry_delay(self, attempt: int) -> float:
        return min(self.retry_backoff * (2**attempt), self.retry_backoff_max)

    # --- 단계별 처리 ---

    def _process(self, task: TaskEnvelope, delivery: Delivery) -> None:
        record = self.store.get(task.image_id)
        if record is None:
            logger.info(f"Image {task.image_id} not found; stale or duplicate task acknowledged")
            delivery.ack()
            return

        status = ImageStatus(record.status)
        if status.is_terminal:
            self.store.append_log(
                task.image_id, f"Duplicate delivery ignored; image already {status}."
            )
            logger.info(f"Image {task.image_id} already {status}; duplicate delivery acknowledged")
            delivery.ack()
            return

        started = "Image processing started."
        if task.attempt:
            started = f"Image processing started (attempt {task.attempt + 1}/{self.max_attempts})."
        try:
            self.store.transition(task.image_id, ImageStatus.PROCESSING, started)
        except InvalidTransition as e:
            # 조회 직후 다른 전달이 종료 상태로 만들었다
            logger.info(f"Image {task.image_id} finalized concurrently ({e}); delivery acknowledged")
            delivery.ack()
            return
        logger.info(f"Image {task.image_id} status updated to 'processing'")

        try:
            result = self.transformer.transform(self._source_path(task), task.unique_filename)
        except TransformError as e:
            self._on_transform_failure(task, delivery, e)
            return
        self._on_success(task, delivery, result)

    def _on_success(self, task: TaskEnvelope, delivery: Delivery, result: TransformResult) -> None:
        try:
            self.store.transition(
                task.image_id,
                ImageStatus.COMPLETED,
                "Image processing completed successfully.",
                processed_filename=result.processed_filename,
            )
        except InvalidTransition as e:
            logger.info(f"Image {task.image_id} lost a duplicate-delivery race ({e}); acknowledged")
            delivery.ack()
            return
        logger.info(f"Image {task.image_id} status updated to 'completed' ({result.processed_path})")

        delivery.ack()
        logger.info(f"[x] Message acknowledged for image {task.image_id}")

        self._publish(
            EventEnvelope(
                image_id=task.image_id,
                status="completed",
                message="Your image has been processed!",
                processed_url=f"{PROCESSED_URL_PREFIX}{result.processed_filename}",
            )
        )

    def _on_transform_failure(self, task: TaskEnvelope, delivery: Delivery, err: TransformError) -> None:
        if err.retriable and task.attempt + 1 < self.max_attempts:
            delay = self.retry_delay(task.attempt)
            if self._schedule_retry(task, delay):
                self.store.append_log(
                    task.image_id,
                    f"Transient processing failure, retry {task.attempt + 2}/{self.max_attempts} "
                    f"in {delay:g}s: {err}",
                    level=LogLevel.WARN,
                )
                delivery.ack()
                logger.warning(f"Image {task.image_id} transient failure, retry scheduled in {delay:g}s: {err}")
                return
            # 재시도를 예약할 수 없으면 종료 상태로 끝낸다 (processing에 남기지 않는다)

        logger.error(f"Error processing image {task.image_id}: {err}")
        try:
            self.store.transition(
                task.image_id,
                ImageStatus.FAILED,
                f"Image processing failed: {err}",
                level=LogLevel.ERROR,
            )
        except InvalidTransition as e:
            logger.info(f"Image {task.image_id} lost a duplicate-delivery race ({e}); acknowledged")
            delivery.ack()
            return
        logger.info(f"Image {task.image_id} status updated to 'failed'")

        delivery.reject(requeue=False)

        self._publish(
            EventEnvelope(
                image_id=task.image_id,
                status="failed",
                message="Image processing failed.",
                error=str(err),
            )
        )

    # --- 보조 ---

    def _schedule_retry(self, task: TaskEnvelope, delay: float) -> bool:
        try:
            self.task_queue.enqueue(task.next_attempt().encode(), durable=True, delay=delay)
        except Exception as e:
            logger.error(f"Could not schedule retry for image {task.image_id}: {e}")
            return False
        return True

    def _source_path(self, task: TaskEnvelope) -> str:
        if self.original_dir:
            local = os.path.join(self.original_dir, task.unique_filename)
            if os.path.exists(local):
                return local
        return task.original_path

    def _publish(self, event: EventEnvelope) -> None:
        try:
            self.notification_queue.enqueue(event.encode(), durable=True)
        except Exception as e:
            # 발행 실패는 처리 결과(상태/ack)에 영향을 주지 않는다
            logger.warning(f"Failed to publish {event.status} event for image {event.image_id}: {e}")
            return
        logger.info(f"Notification sent for image {event.image_id} ({event.status})")

    @staticmethod
    def _reject_if_open(delivery: Delivery) -> None:
        if not delivery.settled:
            delivery.reject(requeue=False)
