"""
Image generation service using Gemini native image output or Imagen.
"""
import logging
import mimetypes
from typing import List, Optional, Tuple

from google.genai import types

from ...llm.gemini import get_genai_client
from ...storage.gcs import parse_data_url, to_data_url

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image"


def _reference_parts(images: List[str]) -> List[types.Part]:
    """Parts for reference images: data URLs inline, gs:// URIs by reference."""
    parts: List[types.Part] = []
    for image_url in images:
        if image_url.startswith("gs://"):
            mime_type = mimetypes.guess_type(image_url)[0] or "image/png"
            parts.append(types.Part.from_uri(file_uri=image_url, mime_type=mime_type))
            continue
        decoded = parse_data_url(image_url)
        if decoded is not None and decoded[0].startswith("image/"):
            mime_type, data = decoded
            parts.append(types.Part.from_bytes(data=data, mime_type=mime_type))
        else:
            logger.warning("Skipping unsupported reference image: %s", image_url[:50])
    return parts


async def _generate_with_imagen(
    prompt: str,
    aspect_ratio: str,
    model: str,
) -> Tuple[Optional[str], Optional[str]]:
    response = await get_genai_client().aio.models.generate_images(
        model=model,
        prompt=prompt,
        config=types.GenerateImagesConfig(
            number_of_images=1,
            aspect_ratio=aspect_ratio,
        ),
    )

    if not response.generated_images:
        return None, "No image was generated"

    image = response.generated_images[0].image
    if image is None or not image.image_bytes:
        return None, "No image data in response"
    return to_data_url(image.image_bytes, image.mime_type or "image/png"), None


async def generate_image(
    prompt: str,
    images: Optional[List[str]] = None,
    aspect_ratio: str = "16:9",
    model: Optional[str] = None,
    resolution: str = "1K",
) -> Tuple[Optional[str], Optional[str]]:
    """
    Generate one image from a text prompt and optional reference images.

    Args:
        prompt: Text description of the image to generate
        images: Reference images as data URLs (image-to-image editing)
        aspect_ratio: Aspect ratio ("16:9", "9:16", "1:1", ...)
        model: Gemini image model or an Imagen model id
        resolution: Output size for models that support it ("1K", "2K", "4K")

    Returns:
        Tuple of (data_url, error_message)
        - On success: (data_url, None)
        - On failure: (None, error_message)
    """
    try:
        model = model or DEFAULT_IMAGE_MODEL
        images = images or []
        logger.info(
            "Generating image with %s (aspect ratio %s, %d input images)",
            model,
            aspect_ratio,
            len(images),
        )

        if model.startswith("imagen-"):
            # Imagen is text-to-image only
            return await _generate_with_imagen(prompt, aspect_ratio, model)

        contents: List[types.Part] = _reference_parts(images)
        contents.append(types.Part.from_text(text=prompt))

        image_config = types.ImageConfig(aspect_ratio=aspect_ratio)
        if model.startswith("gemini-3"):
            image_config = types.ImageConfig(aspect_ratio=aspect_ratio, image_size=resolution)

        response = await get_genai_client().aio.models.generate_content(
            model=model,
            contents=contents,
            config=types.GenerateContentConfig(
                response_modalities=["IMAGE"],
                image_config=image_config,
            ),
        )

        if not response.candidates:
            return None, "No candidates in response"

        candidate = response.candidates[0]
        if not candidate.content or not candidate.content.parts:
            return None, "No content parts in response"

        # Extract image from response
        for part in candidate.content.parts:
            if part.inline_data is not None and part.inline_data.data:
                mime_type = part.inline_data.mime_type or "image/png"
                logger.info("Image generated successfully")
                return to_data_url(part.inline_data.data, mime_type), None

        return None, "No image data in response"

    except Exception as e:
        logger.exception("Error generating image")
        return None, str(e)
