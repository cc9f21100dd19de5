"""앱 전역 커스텀 예외 클래스.

두 계열로 나뉜다.
- AppException: HTTP 경계에서 전역 핸들러(error_handlers.py)가
  {"error_code": "...", "message": "..."} 형식의 JSON 응답으로 변환한다.
- PipelineError: 큐/상태 저장소/변환 단계에서 발생하며 워커가 메시지
  처리 결과(ack, reject, retry)를 결정하는 데 사용한다.
"""


class AppException(Exception):
    """앱 전역 베이스 예외.

    서브클래스에서 status_code, error_code, message를 클래스 변수로 정의하면
    전역 핸들러가 해당 값을 읽어 HTTP 응답을 생성한다.
    """

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    message: str = "서버 내부 오류가 발생했습니다"

    def __init__(self, message: str | None = None):
        if message:
            self.message = message
        super().__init__(self.message)


# --- 이미지 관련 ---


class ImageNotFound(AppException):
    status_code = 404
    error_code = "IMAGE_NOT_FOUND"
    message = "이미지를 찾을 수 없습니다"


class InvalidUpload(AppException):
    status_code = 400
    error_code = "INVALID_UPLOAD"
    message = "JPEG, PNG, GIF, WebP 이미지만 업로드할 수 있습니다"


class UploadTooLarge(AppException):
    status_code = 413
    error_code = "UPLOAD_TOO_LARGE"
    message = "업로드 파일이 너무 큽니다"


class EnqueueFailed(AppException):
    status_code = 500
    error_code = "ENQUEUE_FAILED"
    message = "이미지 메타데이터 저장 또는 처리 대기열 등록에 실패했습니다"


# --- 파이프라인 ---


class PipelineError(Exception):
    """큐/저장소/변환 단계 예외의 베이스."""


class QueueUnavailable(PipelineError):
    """브로커에 연결할 수 없다. 시작 시점이면 프로세스를 종료해야 한다."""


class StateStoreUnavailable(PipelineError):
    """상태 저장소에 연결할 수 없다."""


class StateStoreError(PipelineError):
    """상태 전이 쓰기 자체가 실패했다 (변환 실패와 구분된다)."""


class MalformedMessage(PipelineError):
    """디코딩할 수 없는 메시지. 재전달해도 해결되지 않는다."""


class InvalidTransition(PipelineError):
    """허용되지 않는 상태 전이."""

    def __init__(self, image_id: str, current: str, target: str):
        self.image_id = image_id
        self.current = current
        self.target = target
        super().__init__(f"{image_id}: {current} -> {target} 전이는 허용되지 않습니다")


class TransformError(PipelineError):
    """변환 실패.

    retriable=True이면 디스크 부족 같은 일시적 자원 문제로 보고
    지연 재전달 경로로 보낸다. 그 외는 같은 입력에 대해 결정적인 실패로 본다.
    """

    def __init__(self, message: str, retriable: bool = False):
        self.retriable = retriable
        super().__init__(message)


class TransformTimeout(TransformError):
    def __init__(self, seconds: float):
        super().__init__(f"Transformation timed out after {seconds:g}s", retriable=False)
