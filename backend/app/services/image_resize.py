"""
Prepare workout screenshots for the vision model: reject non-images, flatten transparency, scale the long
side down and re-encode as JPEG. Scale only, never crop.
"""
import io
import logging

from PIL import Image, UnidentifiedImageError
from starlette.concurrency import run_in_threadpool

from app.services.errors import ParseError

logger = logging.getLogger(__name__)

MAX_LONG_SIDE = 1536
JPEG_QUALITY = 85


def _prepare_sync(image_bytes: bytes, max_long_side: int = MAX_LONG_SIDE) -> tuple[bytes, tuple[int, int]]:
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ParseError("Uploaded file is not a readable image") from e

    if img.mode in ("P", "RGBA", "LA"):
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        img = background
    elif img.mode != "RGB":
        img = img.convert("RGB")

    w, h = img.size
    long_side = max(w, h)
    if long_side > max_long_side:
        scale = max_long_side / long_side
        img = img.resize((max(1, round(w * scale)), max(1, round(h * scale))), Image.Resampling.LANCZOS)

    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=JPEG_QUALITY)
    if img.size != (w, h):
        logger.debug("screenshot resized %sx%s -> %sx%s", w, h, *img.size)
    return buf.getvalue(), img.size


async def prepare_screenshot(image_bytes: bytes, max_long_side: int = MAX_LONG_SIDE) -> bytes:
    """JPEG bytes ready for the vision model. Raises ParseError for data Pillow cannot open."""
    data, _ = await run_in_threadpool(_prepare_sync, image_bytes, max_long_side)
    return data
