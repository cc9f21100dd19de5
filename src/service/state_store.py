"""이미지 레코드 상태 저장소.

상태 머신:
    pending -> processing -> {completed, failed}
    processing -> processing  (재전달된 작업의 재진입, 로그만 추가)
    completed -> completed / failed -> failed  (같은 필드면 멱등 no-op)

전이는 `UPDATE ... WHERE status = <읽은 상태>` 조건부 쓰기로 수행하고
처리 로그 추가와 같은 트랜잭션에서 커밋한다. 여러 워커가 같은 이미지를
동시에 전이하려 하면 늦은 쪽이 현재 상태를 다시 읽고 재판정한다.
"""

from contextlib import contextmanager
from datetime import UTC, datetime

from loguru import logger
from sqlalchemy import text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from core.exceptions import (
    ImageNotFound,
    InvalidTransition,
    StateStoreError,
    StateStoreUnavailable,
)
from model.database import build_engine, create_db_and_tables
from model.image import ImageRecord, ImageStatus, LogLevel, OutboxEntry, ProcessingLogEntry

ALLOWED_SOURCES: dict[ImageStatus, frozenset[ImageStatus]] = {
    ImageStatus.PROCESSING: frozenset({ImageStatus.PENDING, ImageStatus.PROCESSING}),
    ImageStatus.COMPLETED: frozenset({ImageStatus.PROCESSING}),
    ImageStatus.FAILED: frozenset({ImageStatus.PROCESSING}),
}

_CAS_RETRIES = 3


class StateStore:
    def __init__(self, engine):
        self.engine = engine

    @contextmanager
    def _session(self):
        """세션을 열고 DB 예외를 StateStoreError로 바꾼다."""
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as e:
            raise StateStoreError(f"상태 저장소 쓰기/읽기 실패: {e}") from e

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise StateStoreUnavailable(str(e)) from e

    # --- 생성/조회 ---

    def create(
        self, record: ImageRecord, outbox: list[OutboxEntry] | None = None
    ) -> ImageRecord:
        """pending 레코드와 (있다면) outbox 항목을 한 트랜잭션으로 저장한다."""
        record.status = ImageStatus.PENDING
        record.processed_filename = None
        with self._session() as session:
            session.add(record)
            session.flush()
            session.add(ProcessingLogEntry(image_id=record.id, message="Image uploaded."))
            for entry in outbox or []:
                session.add(entry)
            session.commit()
            session.refresh(record)
        return record

    def get(self, image_id: str) -> ImageRecord | None:
        with self._session() as session:
            return session.get(ImageRecord, image_id)

    def logs(self, image_id: str) -> list[ProcessingLogEntry]:
        with self._session() as session:
            stmt = (
                select(ProcessingLogEntry)
                .where(ProcessingLogEntry.image_id == image_id)
                .order_by(ProcessingLogEntry.id)
            )
            return list(session.exec(stmt).all())

    def append_log(self, image_id: str, message: str, level: str = LogLevel.INFO) -> None:
        with self._session() as session:
            session.add(ProcessingLogEntry(image_id=image_id, message=message, level=level))
            session.commit()

    def status_view(self, image_id: str) -> dict:
        """외부 상태 API용 뷰. 경로는 공유 스토리지 기준 상대 경로."""
        record = self.get(image_id)
        if record is None:
            raise ImageNotFound
        return {
            "id": record.id,
            "status": record.status,
            "originalPath": f"original/{record.unique_filename}",
            "processedPath": (
                f"processed/{record.processed_filename}" if record.processed_filename else None
            ),
            "originalFilename": record.original_filename,
            "attempts": record.attempts,
            "processingLog": [
                {"timestamp": e.timestamp.isoformat(), "message": e.message, "level": e.level}
                for e in self.logs(image_id)
            ],
        }

    # --- 상태 전이 ---

    def transition(
        self,
        image_id: str,
        target: ImageStatus,
        message: str,
        level: str = LogLevel.INFO,
        **fields,
    ) -> ImageRecord:
        """상태를 target으로 옮기고 로그를 한 줄 추가한다.

        - 레코드가 없으면 ImageNotFound
        - 이미 같은 종료 상태이고 fields도 같으면 아무것도 하지 않고 반환
        - 그 외 허용되지 않는 전이는 InvalidTransition
        """
        target = ImageStatus(target)
        if target not in ALLOWED_SOURCES:
            raise InvalidTransition(image_id, "*", target)

        with self._session() as session:
            for _ in range(_CAS_RETRIES):
                record = session.get(ImageRecord, image_id)
                if record is None:
                    raise ImageNotFound(f"이미지를 찾을 수 없습니다: {image_id}")
                current = ImageStatus(record.status)

                if current == target and target.is_terminal:
                    if all(getattr(record, k) == v for k, v in fields.items()):
                        logger.debug(f"Image {image_id} already {target}; transition is a no-op")
                        return record
                    raise InvalidTransition(image_id, current, target)
                if current not in ALLOWED_SOURCES[target]:
                    raise InvalidTransition(image_id, current, target)

                values = {"status": target, **fields}
                if target == ImageStatus.PROCESSING:
                    values["attempts"] = ImageRecord.attempts + 1
                result = session.connection().execute(
                    update(ImageRecord)
                    .where(ImageRecord.id == image_id, ImageRecord.status == current)
                    .values(**values)
                )
                if result.rowcount == 1:
                    session.add(
                        ProcessingLogEntry(image_id=image_id, message=message, level=level)
                    )
                    session.commit()
                    session.refresh(record)
                    return record

                # 다른 워커가 먼저 전이했다 → 다시 읽고 재판정
                session.rollback()
                session.expire_all()
            raise StateStoreError(f"Image {image_id}: 상태 전이 경합이 해소되지 않았습니다")

    # --- outbox ---

    def pending_outbox(self, limit: int = 100) -> list[OutboxEntry]:
        with self._session() as session:
            stmt = (
                select(OutboxEntry)
                .where(OutboxEntry.sent_at == None)  # noqa: E711
                .order_by(OutboxEntry.id)
                .limit(limit)
            )
            return list(session.exec(stmt).all())

    def mark_sent(self, entry_id: int) -> None:
        with self._session() as session:
            entry = session.get(OutboxEntry, entry_id)
            if entry is not None and entry.sent_at is None:
                entry.sent_at = datetime.now(UTC)
                session.add(entry)
                session.commit()


def connect_state_store(database_url: str, echo: bool = False) -> StateStore:
    """엔진 생성 + 테이블 생성 + 연결 확인. 실패하면 StateStoreUnavailable."""
    try:
        engine = build_engine(database_url, echo=echo)
        create_db_and_tables(engine)
    except SQLAlchemyError as e:
        raise StateStoreUnavailable(f"상태 저장소에 연결할 수 없습니다: {e}") from e
    store = StateStore(engine)
    store.ping()
    logger.info(f"State store ready ({database_url})")
    return store
