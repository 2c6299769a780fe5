"""
Content type detection from file bytes.
"""

import logging
import mimetypes
from typing import Optional

import magic

logger = logging.getLogger(__name__)

# libmagic only needs the head of the file
SNIFF_BYTES = 8192

# Answers that say nothing about what the bytes are
INCONCLUSIVE_TYPES = frozenset({
    'application/octet-stream',
    'application/x-empty',
    'inode/x-empty',
    'text/plain',
})


def sniff_mime(data: bytes, file_name: Optional[str] = None) -> str:
    """Detect the MIME type from magic bytes, guessing from the name only as a fallback."""
    detected = None
    try:
        detected = magic.from_buffer(data[:SNIFF_BYTES], mime=True)
    except magic.MagicException as e:
        logger.warning(f"Content sniffing failed: {e}")

    if detected and detected not in INCONCLUSIVE_TYPES:
        return detected

    guessed = mimetypes.guess_type(file_name)[0] if file_name else None
    return guessed or detected or 'application/octet-stream'
