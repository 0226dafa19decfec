import base64
import logging
import os

from google import genai
from google.genai import types
from google.genai.types import Modality

logger = logging.getLogger(__name__)

IMAGE_MODELS = [
    "gemini-2.5-flash-image",
    "gemini-3-pro-image-preview",
]

DEFAULT_IMAGE_MODEL = IMAGE_MODELS[0]

NO_IMAGE_MESSAGE = "No image data found in the API response."
TRANSPORT_FAILURE_MESSAGE = "Failed to generate image with Gemini API."


class ImageEditError(Exception):
    """Base class for failures while asking the model for an edited image."""


class NoImagePart(ImageEditError):
    def __init__(self, message=NO_IMAGE_MESSAGE):
        super().__init__(message)


class TransportFailure(ImageEditError):
    def __init__(self, message=TRANSPORT_FAILURE_MESSAGE):
        super().__init__(message)


class MissingApiKey(RuntimeError):
    pass


def create_client(api_key=None, timeout_ms=None):
    """Build the process-wide Gemini client from the environment."""
    api_key = api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY")
    if not api_key:
        raise MissingApiKey("GEMINI_API_KEY environment variable not set.")

    if timeout_ms is None:
        timeout_ms = int(os.environ.get("GEMINI_TIMEOUT_MS", "300000"))

    return genai.Client(
        api_key=api_key,
        http_options=types.HttpOptions(timeout=timeout_ms),
    )


def _response_parts(response):
    candidates = getattr(response, "candidates", None) or []
    if not candidates or candidates[0].content is None:
        return []
    return candidates[0].content.parts or []


def find_image_data(response):
    """Return the bytes of the first inline image part, or None."""
    for part in _response_parts(response):
        if part.inline_data and part.inline_data.data:
            return part.inline_data.data
    return None


def edit_image_with_gemini(client, base64_image_data, mime_type, prompt, model=DEFAULT_IMAGE_MODEL):
    """Send one image + prompt to the model and return the edited image as base64.

    Makes exactly one generate_content call. The first response part that
    carries inline image data wins; anything after it is ignored.
    """
    try:
        image_bytes = base64.b64decode(base64_image_data, validate=True)
        response = client.models.generate_content(
            model=model,
            contents=[
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                types.Part.from_text(text=prompt),
            ],
            config=types.GenerateContentConfig(
                response_modalities=[Modality.IMAGE],
            ),
        )
    except Exception as e:
        logger.exception("Error calling Gemini API (model=%s)", model)
        raise TransportFailure() from e

    image_data = find_image_data(response)
    if image_data is None:
        logger.error("Gemini response from %s had no inline image part", model)
        raise NoImagePart()

    return base64.b64encode(image_data).decode("utf-8")
