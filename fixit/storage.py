"""Image storage for issue photos and proof-of-work images.

Only the returned URL is stored on issues.
"""

import logging
import os
import uuid
from pathlib import Path
from typing import Optional

import httpx

from fixit.errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp", "image/gif": ".gif"}
MAX_IMAGE_BYTES = int(os.getenv("MAX_IMAGE_UPLOAD_BYTES", 8 * 1024 * 1024))
CLOUDINARY_DELIVERY_HOST = "res.cloudinary.com"


class ImageStoreError(Exception):
    """Raised when an image cannot be stored."""

    pass


class ImageStore:
    """Abstract base for image stores."""

    async def upload(self, content: bytes, content_type: str, folder: str = "issues") -> str:
        """Store ``content`` and return a stable URL."""
        raise NotImplementedError

    def owns(self, url: str) -> bool:
        """True when ``url`` points at an image this store handed out."""
        raise NotImplementedError


class CloudinaryImageStore(ImageStore):
    """Unsigned uploads to Cloudinary through an upload preset."""

    def __init__(self, cloud_name: str, upload_preset: str, timeout: float = 30.0):
        self.upload_url = f"https://api.cloudinary.com/v1_1/{cloud_name}/image/upload"
        self.delivery_prefix = f"https://{CLOUDINARY_DELIVERY_HOST}/{cloud_name}/"
        self.upload_preset = upload_preset
        self.timeout = timeout

    async def upload(self, content: bytes, content_type: str, folder: str = "issues") -> str:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.upload_url,
                    data={"upload_preset": self.upload_preset, "folder": f"fixit/{folder}"},
                    files={"file": (f"upload{ALLOWED_IMAGE_TYPES.get(content_type, '')}", content, content_type)},
                )
                response.raise_for_status()
                url = response.json().get("secure_url")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Cloudinary upload failed: {str(e)}")
            raise ImageStoreError(f"Cloudinary upload failed: {str(e)}")

        if not url:
            raise ImageStoreError("Cloudinary response did not include a URL")
        return url

    def owns(self, url: str) -> bool:
        return url.startswith(self.delivery_prefix)


class LocalImageStore(ImageStore):
    """Writes images under ``root`` and serves them from ``url_prefix``."""

    def __init__(self, root: str, url_prefix: str = "/uploads"):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    async def upload(self, content: bytes, content_type: str, folder: str = "issues") -> str:
        name = f"{uuid.uuid4().hex}{ALLOWED_IMAGE_TYPES.get(content_type, '.bin')}"
        target = self.root / folder
        try:
            target.mkdir(parents=True, exist_ok=True)
            (target / name).write_bytes(content)
        except OSError as e:
            logger.error(f"Local image write failed: {str(e)}")
            raise ImageStoreError(f"Could not store image: {str(e)}")
        return f"{self.url_prefix}/{folder}/{name}"

    def owns(self, url: str) -> bool:
        return url.startswith(f"{self.url_prefix}/") and ".." not in url


def validate_image(content: bytes, content_type: Optional[str]) -> None:
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError("Only JPEG, PNG, WEBP or GIF images are allowed")
    if not content:
        raise ValidationError("Uploaded image is empty")
    if len(content) > MAX_IMAGE_BYTES:
        raise ValidationError(f"Image exceeds {MAX_IMAGE_BYTES // (1024 * 1024)} MB limit")


def upload_dir() -> str:
    return os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))


def get_image_store() -> ImageStore:
    """
    Factory for the configured image store.

    Uses Cloudinary when CLOUDINARY_CLOUD_NAME and CLOUDINARY_UPLOAD_PRESET
    are set, the local UPLOAD_DIR otherwise.
    """
    cloud_name = os.getenv("CLOUDINARY_CLOUD_NAME", "").strip()
    preset = os.getenv("CLOUDINARY_UPLOAD_PRESET", "").strip()
    if cloud_name and preset:
        return CloudinaryImageStore(cloud_name, preset)
    return LocalImageStore(upload_dir())
