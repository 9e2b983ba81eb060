from functools import lru_cache
from typing import Optional

from google import genai
from google.genai import types

from mediaflow.config import get_settings
from mediaflow.storage.gcs import parse_data_url


@lru_cache(maxsize=1)
def get_genai_client() -> genai.Client:
  """Vertex AI client shared by every generation back end."""
  settings = get_settings()
  return genai.Client(
    vertexai=True,
    project=settings.gemini_project_id,
    location=settings.gemini_location,
  )


def to_genai_image(ref: Optional[str]) -> Optional[types.Image]:
  """Build an Image from a data URL or gs:// URI; None for anything else."""
  if not ref:
    return None
  if ref.startswith("gs://"):
    return types.Image(gcs_uri=ref)
  decoded = parse_data_url(ref)
  if decoded is None or not decoded[0].startswith("image/"):
    return None
  mime_type, data = decoded
  return types.Image(image_bytes=data, mime_type=mime_type)
