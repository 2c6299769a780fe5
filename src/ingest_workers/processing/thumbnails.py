import logging
from io import BytesIO

from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

THUMBNAIL_FORMAT = "JPEG"
THUMBNAIL_MIME = "image/jpeg"


def make_thumbnail(data: bytes, max_width: int, max_height: int) -> bytes:
    """Render a JPEG no larger than the bounds, keeping aspect ratio.

    The image is re-encoded from pixels only, so EXIF and other metadata are dropped.
    """
    with Image.open(BytesIO(data)) as image:
        image = ImageOps.exif_transpose(image)
        image.thumbnail((max_width, max_height))
        if image.mode != "RGB":
            image = image.convert("RGB")

        output = BytesIO()
        image.save(output, format=THUMBNAIL_FORMAT, quality=80)
    logger.debug(f"Thumbnail rendered at {image.size[0]}x{image.size[1]}")
    return output.getvalue()
