"""
Video generation service using Veo on Vertex AI.

Veo runs as a long-running operation; it is polled at a fixed interval up to
a fixed number of times before giving up with GenerationTimeoutError.
"""
import asyncio
import logging
from typing import Any, List, Optional, Tuple

from google.genai import types

from ...config import get_settings
from ...llm.gemini import get_genai_client, to_genai_image
from ...services.errors import GenerationCancelledError, GenerationTimeoutError
from ...storage.gcs import to_data_url

logger = logging.getLogger(__name__)

DEFAULT_VIDEO_MODEL = "veo-3.1-fast-generate-preview"


async def wait_for_operation(
    client: Any,
    operation: Any,
    *,
    poll_interval: float,
    max_polls: int,
    cancel_event: Optional[asyncio.Event] = None,
) -> Any:
    """
    Poll a long-running operation until it is done.

    Raises:
        GenerationTimeoutError: still not done after ``max_polls`` polls
        GenerationCancelledError: ``cancel_event`` was set between polls
    """
    poll_count = 0
    while not operation.done and poll_count < max_polls:
        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCancelledError("generate video")
        logger.info("Polling video operation... (%d/%d)", poll_count + 1, max_polls)
        await asyncio.sleep(poll_interval)
        operation = await client.aio.operations.get(operation)
        poll_count += 1

    if not operation.done:
        raise GenerationTimeoutError("generate video", "Video generation timed out")
    return operation


async def generate_video(
    prompt: str,
    first_frame: Optional[str] = None,
    last_frame: Optional[str] = None,
    images: Optional[List[str]] = None,
    aspect_ratio: str = "16:9",
    duration: int = 4,
    model: Optional[str] = None,
    generate_audio: bool = True,
    resolution: str = "720p",
    *,
    cancel_event: Optional[asyncio.Event] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Generate one video clip.

    The first frame seeds the clip and the last frame constrains its ending.
    Reference ``images`` are accepted for API symmetry but not sent to Veo.

    Returns:
        Tuple of (video_url, error_message); the URL is a base64 data URL, or
        the gs:// URI when Veo stores the result in Cloud Storage.

    Raises:
        GenerationTimeoutError: the operation did not finish within the poll budget
        GenerationCancelledError: ``cancel_event`` was set while polling
    """
    settings = get_settings()
    model = model or DEFAULT_VIDEO_MODEL
    logger.info(
        "Generating video with %s (duration %ss, aspect ratio %s, audio %s, %s, "
        "first frame %s, last frame %s, %d reference images)",
        model,
        duration,
        aspect_ratio,
        generate_audio,
        resolution,
        "yes" if first_frame else "no",
        "yes" if last_frame else "no",
        len(images or []),
    )

    try:
        client = get_genai_client()

        config_kwargs = {
            "number_of_videos": 1,
            "duration_seconds": duration,
            "aspect_ratio": aspect_ratio,
            "generate_audio": generate_audio,
            "resolution": resolution,
        }
        last_frame_image = to_genai_image(last_frame)
        if last_frame_image is not None:
            config_kwargs["last_frame"] = last_frame_image

        operation = await client.aio.models.generate_videos(
            model=model,
            prompt=prompt,
            image=to_genai_image(first_frame),
            config=types.GenerateVideosConfig(**config_kwargs),
        )

        logger.info("Waiting for video generation to complete...")
        operation = await wait_for_operation(
            client,
            operation,
            poll_interval=settings.video_poll_interval_seconds,
            max_polls=settings.video_max_polls,
            cancel_event=cancel_event,
        )

        if operation.error:
            return None, f"Video generation failed: {operation.error}"

        videos = operation.response.generated_videos if operation.response else None
        if not videos:
            return None, "No videos generated"

        video = videos[0].video
        if video is None:
            return None, "Video bytes are not defined"
        if video.video_bytes:
            logger.info("Video generated successfully, encoding to base64")
            return to_data_url(video.video_bytes, video.mime_type or "video/mp4"), None
        if video.uri:
            logger.info("Video generated successfully at %s", video.uri)
            return video.uri, None
        return None, "Video bytes are not defined"

    except (GenerationTimeoutError, GenerationCancelledError):
        raise
    except Exception as e:
        logger.exception("Error generating video")
        return None, str(e)
