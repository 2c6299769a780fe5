"""
MIME lookup tables used for classification and for serving files.
"""

from typing import Optional

# Types that are quarantined even when the scanner finds nothing.
# SVG is here because it can carry script.
DANGEROUS_MIME_TYPES = frozenset({
    'application/x-msdownload',
    'application/x-executable',
    'application/x-dosexec',
    'application/x-msdos-program',
    'application/x-msdos-windows',
    'application/vnd.microsoft.portable-executable',
    'application/x-pie-executable',
    'application/x-sharedlib',
    'application/x-sh',
    'text/x-shellscript',
    'application/bat',
    'application/x-bat',
    'application/javascript',
    'text/javascript',
    'application/html',
    'text/html',
    'application/wasm',
    'application/jar',
    'application/java-archive',
    'image/svg+xml',
})

# Types a browser may render inline.
SAFE_PREVIEW_TYPES = frozenset({
    'image/jpeg',
    'image/png',
    'image/webp',
    'text/plain',
    'application/pdf',
})

VECTOR_IMAGE_TYPES = frozenset({'image/svg+xml'})


def is_dangerous(mime_type: Optional[str]) -> bool:
    return mime_type in DANGEROUS_MIME_TYPES


def is_safe_for_preview(mime_type: Optional[str]) -> bool:
    return mime_type in SAFE_PREVIEW_TYPES


def is_raster_image(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.startswith('image/') and mime_type not in VECTOR_IMAGE_TYPES
