"""이미지 처리 함수 단위 테스트."""

from PIL import Image

from processor.operations import composite_overlay, resize_to_width, watermark


def _make_image(width: int = 100, height: int = 100, color: str = "red") -> Image.Image:
    """테스트용 RGB 이미지를 메모리에서 생성한다."""
    return Image.new("RGB", (width, height), color=color)


def test_resize_keeps_aspect_ratio():
    """가로를 맞추고 세로는 비율대로 줄어든다."""
    result = resize_to_width(_make_image(1600, 900), width=800)

    assert result.size == (800, 450)


def test_resize_does_not_upscale():
    img = _make_image(300, 200)
    result = resize_to_width(img, width=800)

    assert result.size == (300, 200)
    assert result is not img


def test_composite_overlay_bottom_right():
    """overlay는 오른쪽 아래에 width 크기로 합성된다."""
    base = _make_image(400, 300, "black")
    mark = Image.new("RGBA", (300, 300), (255, 255, 255, 255))

    result = composite_overlay(base, mark, width=100)

    assert result.size == (400, 300)
    assert result.getpixel((399, 299))[:3] == (255, 255, 255)
    assert result.getpixel((0, 0))[:3] == (0, 0, 0)
    # overlay 영역 바로 바깥은 원본 그대로
    assert result.getpixel((299, 199))[:3] == (0, 0, 0)


def test_watermark_keeps_size():
    img = _make_image(200, 120)
    result = watermark(img, text="hi")

    assert isinstance(result, Image.Image)
    assert result.size == (200, 120)
    assert result.mode == "RGBA"
