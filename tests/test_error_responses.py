"""커스텀 에러 응답 형식 검증 테스트.

모든 에러가 {"error_code": "...", "message": "..."} 형식인지 확인한다.
"""

import io
import os

import pytest
from fastapi.testclient import TestClient

from main import create_app


@pytest.fixture()
def client(settings, store, broker):
    with TestClient(create_app(settings, store=store, broker=broker)) as c:
        yield c


def test_error_has_error_code_and_message(client):
    """에러 응답에 error_code + message 필드가 존재한다."""
    resp = client.get("/api/images/nope")
    data = resp.json()
    assert "error_code" in data, f"error_code 필드 없음: {data}"
    assert "message" in data, f"message 필드 없음: {data}"
    assert isinstance(data["error_code"], str)
    assert isinstance(data["message"], str)


def test_not_found_error_format(client):
    resp = client.get("/api/images/nope")
    assert resp.status_code == 404
    assert resp.json()["error_code"] == "IMAGE_NOT_FOUND"


def test_empty_upload_error_format(client):
    """빈 파일 → 400 + INVALID_UPLOAD 형식."""
    resp = client.post(
        "/api/images/upload",
        files={"image": ("empty.png", io.BytesIO(b""), "image/png")},
    )
    assert resp.status_code == 400
    data = resp.json()
    assert data["error_code"] == "INVALID_UPLOAD"
    assert len(data["message"]) > 0


def test_enqueue_failure_error_format(client, settings, store, monkeypatch):
    """레코드 저장 실패 → 500 + ENQUEUE_FAILED, 원본 파일도 남지 않는다."""
    from core.exceptions import StateStoreError

    def broken(*args, **kwargs):
        raise StateStoreError("disk full")

    monkeypatch.setattr(store, "create", broken)
    resp = client.post(
        "/api/images/upload",
        files={"image": ("t.png", io.BytesIO(b"\x89PNG fake"), "image/png")},
    )
    assert resp.status_code == 500
    assert resp.json()["error_code"] == "ENQUEUE_FAILED"
    assert os.listdir(settings.original_dir) == []


def test_state_store_outage_is_503(client, store, monkeypatch):
    """상태 저장소 장애 → 500 traceback 대신 503 + SERVICE_UNAVAILABLE."""
    from core.exceptions import StateStoreError

    def broken(image_id):
        raise StateStoreError("connection reset")

    monkeypatch.setattr(store, "get", broken)
    resp = client.get("/api/images/i1")
    assert resp.status_code == 503
    assert resp.json()["error_code"] == "SERVICE_UNAVAILABLE"
