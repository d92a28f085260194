"""
Image hosting. Catalog writes upload images before the record is created, and
an upload failure aborts the write.
"""
import io
import logging
from typing import Iterable, List, Optional, Protocol

from config import Settings
from errors import ClientError, DependencyError

logger = logging.getLogger(__name__)

UPLOAD_FOLDER = "shewear-products"
MAX_IMAGE_BYTES = 5 * 1024 * 1024
MAX_EXTRA_IMAGES = 8


class ImageUploader(Protocol):
    def upload(self, data: bytes) -> str:
        ...


class CloudinaryUploader:
    def __init__(self, cloud_name: str, api_key: str, api_secret: str, timeout: int = 30):
        import cloudinary
        import cloudinary.uploader

        cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret, secure=True)
        self._uploader = cloudinary.uploader
        self.timeout = timeout

    def upload(self, data: bytes) -> str:
        result = self._uploader.upload(io.BytesIO(data), folder=UPLOAD_FOLDER, timeout=self.timeout)
        return result["secure_url"]


class UnconfiguredUploader:
    def upload(self, data: bytes) -> str:
        raise RuntimeError("Image hosting is not configured")


def build_uploader(settings: Settings) -> ImageUploader:
    if settings.cloudinary_cloud_name and settings.cloudinary_api_key and settings.cloudinary_api_secret:
        return CloudinaryUploader(
            settings.cloudinary_cloud_name,
            settings.cloudinary_api_key,
            settings.cloudinary_api_secret,
        )
    logger.warning("Cloudinary not configured; image uploads will fail")
    return UnconfiguredUploader()


def upload_images(uploader: ImageUploader, image: Optional[bytes], extra: Iterable[bytes] = ()) -> dict:
    """Upload the main image and any extra images; returns the fields to merge into the item."""
    fields = {}
    if image:
        fields["image"] = _upload_one(uploader, image, "main image")
    extra = [b for b in extra if b]
    if len(extra) > MAX_EXTRA_IMAGES:
        raise ClientError(f"At most {MAX_EXTRA_IMAGES} additional images are allowed")
    if extra:
        urls: List[str] = [_upload_one(uploader, data, "additional images") for data in extra]
        fields["images"] = urls
    return fields


def _upload_one(uploader: ImageUploader, data: bytes, what: str) -> str:
    if len(data) > MAX_IMAGE_BYTES:
        raise ClientError(f"Failed to upload {what}: file exceeds 5MB")
    try:
        return uploader.upload(data)
    except Exception as e:
        logger.error("Image upload (%s) failed: %s", what, e)
        raise DependencyError(f"Failed to upload {what}") from e
