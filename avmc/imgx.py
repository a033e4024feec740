"""Derive a poster image by cropping the right half of a fanart image."""

from __future__ import annotations

import io

from PIL import Image

JPEG_QUALITY = 95


def poster_from_fanart_right_half_jpeg(fanart: bytes) -> bytes:
    """Crop the right half (full height) of a JPEG or PNG image and encode it as JPEG.

    Raises :class:`ValueError` for empty or undecodable input.
    """
    if not fanart:
        raise ValueError("fanart 为空")

    try:
        with Image.open(io.BytesIO(fanart), formats=("JPEG", "PNG")) as img:
            img.load()
            width, height = img.size
            if width <= 0 or height <= 0:
                raise ValueError("图片尺寸无效")
            half = img.crop((width // 2, 0, width, height)).convert("RGBA")
    except (OSError, SyntaxError) as e:
        raise ValueError(f"无法解码 fanart：{e}") from e

    # Transparent pixels end up black, as with premultiplied colour dropped of its alpha.
    background = Image.new("RGBA", half.size, (0, 0, 0, 255))
    rgb = Image.alpha_composite(background, half).convert("RGB")

    out = io.BytesIO()
    rgb.save(out, format="JPEG", quality=JPEG_QUALITY)
    return out.getvalue()