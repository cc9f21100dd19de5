"""
순수 CPU-bound 이미지 처리 함수.
모든 함수는 PIL.Image를 받아서 PIL.Image를 반환한다.
"""

from PIL import Image, ImageDraw, ImageFont

MARGIN = 20


def resize_to_width(image: Image.Image, width: int) -> Image.Image:
    """가로를 width에 맞추고 세로는 비율을 유지한다. 작은 이미지는 키우지 않는다."""
    if image.width <= width:
        return image.copy()
    height = max(1, round(image.height * width / image.width))
    return image.resize((width, height), Image.LANCZOS)


def composite_overlay(image: Image.Image, overlay: Image.Image, width: int) -> Image.Image:
    """overlay를 width로 줄여 오른쪽 아래(southeast)에 합성한다."""
    mark = resize_to_width(overlay.convert("RGBA"), min(width, image.width))
    base = image.convert("RGBA")
    x = max(0, base.width - mark.width)
    y = max(0, base.height - mark.height)
    base.alpha_composite(mark, dest=(x, y))
    return base


def watermark(image: Image.Image, text: str = "imagepipe") -> Image.Image:
    """overlay 이미지가 없을 때 쓰는 텍스트 워터마크."""
    overlay = image.convert("RGBA")
    layer = Image.new("RGBA", overlay.size, (255, 255, 255, 0))
    draw = ImageDraw.Draw(layer)

    try:
        font = ImageFont.truetype("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf", 36)
    except OSError:
        font = ImageFont.load_default(size=36)

    bbox = draw.textbbox((0, 0), text, font=font)
    text_w = bbox[2] - bbox[0]
    text_h = bbox[3] - bbox[1]

    x = max(0, overlay.width - text_w - MARGIN)
    y = max(0, overlay.height - text_h - MARGIN)

    draw.text((x, y), text, fill=(255, 255, 255, 128), font=font)
    return Image.alpha_composite(overlay, layer)
