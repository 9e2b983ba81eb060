"""
Image resizing for resize nodes: centre-crop to fill a fixed output size.
"""
import asyncio
import io
import logging
from typing import Optional, Tuple
from uuid import uuid4

from PIL import Image, ImageOps

from ...storage.gcs import download_bytes, upload_bytes

logger = logging.getLogger(__name__)

TARGET_SIZES = {
    "16:9": (1920, 1080),
    "9:16": (1080, 1920),
}


def cover_resize(image_bytes: bytes, size: Tuple[int, int]) -> bytes:
    """Scale and centre-crop so the image exactly fills ``size``; returns PNG bytes."""
    with Image.open(io.BytesIO(image_bytes)) as img:
        img = ImageOps.exif_transpose(img)
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA")
        fitted = ImageOps.fit(
            img,
            size,
            method=Image.Resampling.LANCZOS,
            centering=(0.5, 0.5),
        )
        buffer = io.BytesIO()
        fitted.save(buffer, format="PNG")
        return buffer.getvalue()


def _resize_and_upload(image: str, size: Tuple[int, int]) -> str:
    source = download_bytes(image)
    resized = cover_resize(source, size)
    return upload_bytes(resized, f"resized-{uuid4()}.png", "image/png")


async def resize_image(image: str, aspect_ratio: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Resize an image (data URL or gs:// URI) to the aspect ratio's target size
    and upload it.

    Returns:
        Tuple of (gs_uri, error_message)
    """
    size = TARGET_SIZES.get(aspect_ratio)
    if size is None:
        return None, f"Invalid aspect ratio: {aspect_ratio}"

    try:
        logger.info("Resizing image to %dx%d", *size)
        # Download, decode and upload are blocking
        gcs_uri = await asyncio.to_thread(_resize_and_upload, image, size)
        return gcs_uri, None
    except Exception as e:
        logger.exception("Error resizing image")
        return None, str(e)
