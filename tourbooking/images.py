"""Resize uploaded images to JPEG files under ``settings.img_dir``."""
import io
import logging
import time
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from .config import settings
from .errors import BadRequest

logger = logging.getLogger(__name__)

USER_PHOTO_SIZE = (500, 500)
TOUR_IMAGE_SIZE = (2000, 1333)
JPEG_QUALITY = 90


def check_content_type(content_type: str | None) -> None:
    if not content_type or not content_type.startswith("image"):
        raise BadRequest("Not an image! Please upload only images.")


def save_resized(data: bytes, folder: str, filename: str, size: tuple[int, int]) -> str:
    try:
        with Image.open(io.BytesIO(data)) as image:
            resized = ImageOps.fit(image.convert("RGB"), size)
    except UnidentifiedImageError:
        raise BadRequest("Not an image! Please upload only images.")

    path = Path(settings.img_dir) / folder / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    resized.save(path, "JPEG", quality=JPEG_QUALITY)
    logger.info("Saved %s", path)
    return filename


def resize_user_photo(data: bytes, user_id: int) -> str:
    filename = f"user-{user_id}-{int(time.time() * 1000)}.jpeg"
    return save_resized(data, "users", filename, USER_PHOTO_SIZE)


def resize_tour_cover(data: bytes, tour_id: int) -> str:
    filename = f"tour-{tour_id}-{int(time.time() * 1000)}-cover.jpeg"
    return save_resized(data, "tours", filename, TOUR_IMAGE_SIZE)


def resize_tour_image(data: bytes, tour_id: int, index: int) -> str:
    filename = f"tour-{tour_id}-{int(time.time() * 1000)}-{index}.jpeg"
    return save_resized(data, "tours", filename, TOUR_IMAGE_SIZE)
