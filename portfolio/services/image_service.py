import base64
import logging
from typing import Optional

from portfolio.exceptions import ValidationError
from portfolio.settings import settings

logger = logging.getLogger(__name__)


def inline_image(
    data: bytes,
    filename: str = "",
    content_type: Optional[str] = None,
    *,
    max_bytes: Optional[int] = None,
) -> str:
    """
    Embed a picked cover image as a data URI so it is stored with the post.
    """
    limit = settings.MAX_IMAGE_BYTES if max_bytes is None else max_bytes

    if not data:
        raise ValidationError("Image file is empty")
    if len(data) > limit:
        raise ValidationError(
            f"Image is too large ({len(data)} bytes, limit is {limit} bytes)"
        )

    if not content_type or content_type == "application/octet-stream":
        content_type = get_content_type_from_filename(filename)
    if not content_type.startswith("image/"):
        raise ValidationError(f"Unsupported image type: {content_type}")

    encoded = base64.b64encode(data).decode("ascii")
    logger.debug(f"Inlined {filename or 'image'} ({content_type}, {len(data)} bytes)")
    return f"data:{content_type};base64,{encoded}"


def get_content_type_from_filename(filename: str) -> str:
    """
    Determine content type from file extension
    """
    filename = filename.lower()
    if filename.endswith((".jpg", ".jpeg")):
        return "image/jpeg"
    elif filename.endswith(".png"):
        return "image/png"
    elif filename.endswith(".gif"):
        return "image/gif"
    elif filename.endswith(".svg"):
        return "image/svg+xml"
    elif filename.endswith(".webp"):
        return "image/webp"
    else:
        return "application/octet-stream"
