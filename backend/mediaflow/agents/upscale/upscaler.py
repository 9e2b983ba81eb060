"""
Image upscaling service using Imagen 4 upscale.
"""
import logging
from typing import Optional, Tuple

from google.genai import types

from ...config import get_settings
from ...llm.gemini import get_genai_client, to_genai_image
from ...storage.gcs import to_data_url

logger = logging.getLogger(__name__)

UPSCALE_MODEL = "imagen-4.0-upscale-preview"


async def upscale_image(
    image: str,
    upscale_factor: str = "x2",
) -> Tuple[Optional[str], Optional[str]]:
    """
    Upscale an image given as a data URL or gs:// URI.

    The result is written to GCS_STORAGE_URI when configured, in which case its
    gs:// URI is returned; otherwise the bytes come back as a data URL.

    Returns:
        Tuple of (image_url, error_message)
    """
    source = to_genai_image(image)
    if source is None:
        return None, "Invalid image format"

    try:
        logger.info("Upscaling image with factor %s: %s", upscale_factor, image[:50])

        config_kwargs = {
            "output_mime_type": "image/png",
            "enhance_input_image": True,
            "image_preservation_factor": 1.0,
        }
        storage_uri = get_settings().gcs_storage_uri
        if storage_uri:
            config_kwargs["output_gcs_uri"] = storage_uri

        response = await get_genai_client().aio.models.upscale_image(
            model=UPSCALE_MODEL,
            image=source,
            upscale_factor=upscale_factor,
            config=types.UpscaleImageConfig(**config_kwargs),
        )

        if not response.generated_images:
            return None, "No generated images in response"

        result = response.generated_images[0].image
        if result is None:
            return None, "No image in response"
        if result.gcs_uri:
            return result.gcs_uri, None
        if result.image_bytes:
            return to_data_url(result.image_bytes, result.mime_type or "image/png"), None
        return None, "No image in response"

    except Exception as e:
        logger.exception("Error upscaling image")
        return None, str(e)
