"""Upload gateway: validate a raw image asset and exchange it for a file token."""

from __future__ import annotations

import io
import logging
import mimetypes
import re
from pathlib import PurePath
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .api_client import OpenApiClient
from .config import ALLOWED_CONTENT_TYPES, ALLOWED_EXTENSIONS
from .errors import UpstreamRejection, ValidationError
from .models import FileToken, Region, UploadedAsset

logger = logging.getLogger(__name__)

UPLOAD_PATH = "/task/openapi/upload"

_UNSAFE_FILENAME = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

# Pillow format names accepted for each allow-listed upload
_ALLOWED_IMAGE_FORMATS = {"JPEG", "PNG", "GIF", "WEBP", "MPO"}


def validate_filename(filename: str, max_length: int = 255) -> str:
    """
    Reject names that could escape a directory or confuse downstream tools.

    Raises:
        ValidationError: Empty, too long, or containing unsafe characters
    """
    if not filename:
        raise ValidationError("filename is required")
    if len(filename) > max_length:
        raise ValidationError(f"filename exceeds {max_length} characters")
    if _UNSAFE_FILENAME.search(filename):
        raise ValidationError("filename contains unsafe characters")
    return filename


def resolve_content_type(filename: str, content_type: Optional[str]) -> str:
    """
    Check the extension and mime type against the image allow-list.

    Returns:
        Normalized mime type

    Raises:
        ValidationError: Extension or mime type not allowed
    """
    suffix = PurePath(filename).suffix.lower()
    if suffix not in ALLOWED_EXTENSIONS:
        raise ValidationError(
            f"unsupported file extension '{suffix or '(none)'}'; only JPEG, PNG, GIF, WebP are allowed"
        )
    mime = (content_type or mimetypes.guess_type(filename)[0] or "").split(";")[0].strip().lower()
    if mime not in ALLOWED_CONTENT_TYPES:
        raise ValidationError(
            f"unsupported file type '{mime or 'unknown'}'; only JPEG, PNG, GIF, WebP are allowed"
        )
    return mime


def sniff_image_format(data: bytes) -> str:
    """Return the Pillow format name of an encoded image, or raise ValidationError."""
    try:
        with Image.open(io.BytesIO(data)) as im:
            image_format = im.format or ""
            im.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValidationError("file content is not a readable image") from e
    if image_format.upper() not in _ALLOWED_IMAGE_FORMATS:
        raise ValidationError(f"image format '{image_format}' is not allowed")
    return image_format


class UploadGateway:
    """Validate raw images locally, then upload them to the region's open API."""

    def __init__(self, api: OpenApiClient):
        self.api = api
        self.config = api.config

    def validate(self, asset: UploadedAsset) -> str:
        """
        Run every local check for an asset.

        Returns:
            Normalized mime type

        Raises:
            ValidationError: Any check failed
        """
        validate_filename(asset.filename, self.config.max_filename_length)
        mime = resolve_content_type(asset.filename, asset.content_type)
        if not asset.data:
            raise ValidationError("file is empty")
        if asset.size > self.config.max_upload_bytes:
            raise ValidationError(
                f"file is {asset.size} bytes, limit is {self.config.max_upload_bytes}"
            )
        sniff_image_format(asset.data)
        return mime

    async def upload(
        self,
        data: bytes,
        filename: str,
        region: Region,
        content_type: Optional[str] = None,
    ) -> FileToken:
        """
        Upload one image and return its file token.

        Args:
            data: Raw file bytes
            filename: Original filename
            region: Target region
            content_type: Mime type reported by the client, guessed from the name if absent

        Returns:
            Opaque file token to substitute into image nodes

        Raises:
            ValidationError: Local checks failed (no network call is made)
            TransportError: Network failure or timeout
            UpstreamRejection: Remote API refused the upload
        """
        return await self.upload_asset(UploadedAsset(data=data, filename=filename, content_type=content_type), region)

    async def upload_asset(self, asset: UploadedAsset, region: Region) -> FileToken:
        mime = self.validate(asset)
        logger.info(f"Uploading {asset.filename} ({asset.size} bytes, region: {region.value})")

        envelope = await self.api.post_multipart(
            region,
            UPLOAD_PATH,
            files={"file": (asset.filename, asset.data, mime)},
            data={"fileType": "image"},
            timeout=self.config.upload_timeout,
        )
        if not envelope.ok:
            logger.error(f"Upload of {asset.filename} rejected: code={envelope.code}, msg={envelope.msg}")
            raise self.api.rejection(envelope, "upload rejected")

        token = envelope.data.get("fileName") if isinstance(envelope.data, dict) else None
        if not token:
            raise UpstreamRejection("upload response did not include a fileName", code=envelope.code, payload=envelope.raw)

        logger.info(f"Uploaded {asset.filename} as {token}")
        return str(token)
