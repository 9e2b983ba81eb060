"""
Text generation service for agent nodes, using Gemini on Vertex AI.
"""
import logging
import mimetypes
from typing import Any, Dict, List, Optional, Tuple

from google.genai import types

from ...llm.gemini import get_genai_client
from ...storage.gcs import parse_data_url

logger = logging.getLogger(__name__)

DEFAULT_TEXT_MODEL = "gemini-2.5-flash"

_FALLBACK_MIME_TYPES = {"image": "image/png", "video": "video/mp4"}


def build_contents(prompt: str, files: Optional[List[Dict[str, Any]]]) -> List[types.Part]:
    """
    Build the request parts: the prompt first, then one part per attached file.

    Data URLs are sent inline; gs:// URIs are passed by reference. Anything
    else (e.g. signed https URLs) is skipped.
    """
    parts: List[types.Part] = [types.Part.from_text(text=prompt)]

    for file in files or []:
        url = file.get("url") or ""
        decoded = parse_data_url(url)
        if decoded is not None:
            mime_type, data = decoded
            parts.append(types.Part.from_bytes(data=data, mime_type=mime_type))
        elif url.startswith("gs://"):
            mime_type = mimetypes.guess_type(url)[0] or _FALLBACK_MIME_TYPES.get(
                file.get("type") or "image", "image/png"
            )
            parts.append(types.Part.from_uri(file_uri=url, mime_type=mime_type))
        else:
            logger.warning("Skipping unsupported file reference: %s", url[:50])

    return parts


async def generate_text(
    prompt: str,
    files: Optional[List[Dict[str, Any]]] = None,
    model: Optional[str] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Generate text from a prompt and optional files.

    Returns:
        Tuple of (text, error_message)
        - On success: (text, None)
        - On failure: (None, error_message)
    """
    try:
        model = model or DEFAULT_TEXT_MODEL
        contents = build_contents(prompt, files)
        logger.info("Calling Gemini %s with %d parts", model, len(contents))

        response = await get_genai_client().aio.models.generate_content(
            model=model,
            contents=contents,
        )

        if not response.candidates:
            return None, "No candidates in response"

        candidate = response.candidates[0]
        if not candidate.content or not candidate.content.parts:
            return None, "No content parts in response"

        text = "".join(part.text for part in candidate.content.parts if part.text)
        logger.info("Text generated successfully, length: %d", len(text))
        return text, None

    except Exception as e:
        logger.exception("Error generating text")
        return None, str(e)
