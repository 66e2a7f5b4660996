import logging
import shutil
import uuid
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from .config import get_settings
from .errors import StorageError

logger = logging.getLogger(__name__)

UPLOAD_URL_PREFIX = "/uploads/"
ALLOWED_SUFFIXES = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic"}


def upload_dir() -> Path:
    path = Path(get_settings().upload_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def _size_of(image: UploadFile) -> int:
    image.file.seek(0, 2)
    size = image.file.tell()
    image.file.seek(0)
    return size


def image_problem(image: Optional[UploadFile]) -> Optional[str]:
    """Return why `image` is not an acceptable upload, or None if it is."""
    if image is None or not image.filename:
        return "An image file is required"
    content_type = (image.content_type or "").lower()
    suffix = Path(image.filename).suffix.lower()
    if not content_type.startswith("image/") and suffix not in ALLOWED_SUFFIXES:
        return "Uploaded file must be an image"
    size = _size_of(image)
    if size == 0:
        return "Uploaded image is empty"
    if size > get_settings().max_upload_bytes:
        return "Uploaded image is too large"
    return None


def save_upload(image: UploadFile) -> str:
    """Persist the upload under a generated name and return its public URL."""
    suffix = Path(image.filename or "").suffix.lower()
    if suffix not in ALLOWED_SUFFIXES:
        suffix = ".jpg"
    name = f"{uuid.uuid4().hex}{suffix}"
    image_path = upload_dir() / name
    try:
        image.file.seek(0)
        with open(image_path, "wb") as buffer:
            shutil.copyfileobj(image.file, buffer)
    except OSError as e:
        logger.error(f"Failed to store upload {image.filename!r}: {e}")
        raise StorageError("Could not store uploaded image") from e
    return UPLOAD_URL_PREFIX + name


def path_for_url(url: Optional[str]) -> Optional[Path]:
    if not url or not url.startswith(UPLOAD_URL_PREFIX):
        return None
    return upload_dir() / url[len(UPLOAD_URL_PREFIX):]


def remove_upload(url: Optional[str]) -> None:
    path = path_for_url(url)
    if path is not None and path.exists():
        try:
            path.unlink()
        except OSError as e:
            logger.warning(f"Could not remove orphaned upload {path}: {e}")
