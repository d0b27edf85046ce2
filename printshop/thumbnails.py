from __future__ import annotations

from pathlib import Path
from typing import Tuple

from PIL import Image, ImageOps

THUMB_PREFIX = "thumbs/"
THUMB_SIZE = (900, 560)


def thumbnail_key(key: str) -> str:
    # a.jpg and a.png are separate photos and need separate previews
    return f"{THUMB_PREFIX}{key.lstrip('/')}.png"


def fit_cover(img: Image.Image, w: int, h: int) -> Image.Image:
    iw, ih = img.size
    scale = max(w / iw, h / ih)
    nw, nh = max(1, int(round(iw * scale))), max(1, int(round(ih * scale)))
    img = img.resize((nw, nh), Image.LANCZOS)
    left = (nw - w) // 2
    top = (nh - h) // 2
    return img.crop((left, top, left + w, top + h))


def render_thumbnail(src: Path, dest: Path, size: Tuple[int, int] = THUMB_SIZE) -> Path:
    """Write a cover-cropped PNG preview of ``src`` to ``dest``."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    with Image.open(src) as im:
        # camera images often carry their rotation in EXIF only
        img = ImageOps.exif_transpose(im).convert("RGB")
    img = fit_cover(img, *size)
    img.save(dest, "PNG", optimize=True)
    return dest
