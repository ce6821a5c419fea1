"""Input format detection for the decode dispatcher.

Formats are chosen from the file extension (case-insensitive) or, for
in-memory buffers without a tag, from their leading magic bytes.

Functions:
    normalize_extension: Lower-case extension with a leading dot
    format_from_extension: Map a path or extension to an :class:`ImageFormat`
    sniff_format: Inspect the leading bytes of a buffer
    is_supported_input: Check whether a path can be decoded
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Dict, Optional, Union

from .errors import UnsupportedFormat


class ImageFormat(enum.Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    AVIF = "avif"
    JXL = "jxl"
    TIFF = "tiff"

    @classmethod
    def from_tag(cls, tag: Union[str, "ImageFormat"]) -> "ImageFormat":
        if isinstance(tag, ImageFormat):
            return tag
        return format_from_extension(tag)


# Supported input extensions (case-insensitive)
EXTENSION_FORMATS: Dict[str, ImageFormat] = {
    '.jpg': ImageFormat.JPEG,
    '.jpeg': ImageFormat.JPEG,
    '.png': ImageFormat.PNG,
    '.webp': ImageFormat.WEBP,
    '.avif': ImageFormat.AVIF,
    '.jxl': ImageFormat.JXL,
    '.tif': ImageFormat.TIFF,
    '.tiff': ImageFormat.TIFF,
}

SUPPORTED_INPUT_EXTENSIONS = frozenset(EXTENSION_FORMATS)


def normalize_extension(path: Union[str, Path]) -> str:
    """Normalize file extension to lowercase with leading dot.

    Args:
        path: File path or bare extension string

    Returns:
        Normalized extension (e.g., '.png'), or '' when *path* has none

    Examples:
        >>> normalize_extension('image.PNG')
        '.png'
        >>> normalize_extension('JXL')
        '.jxl'
        >>> normalize_extension('archive/README')
        ''
    """
    if isinstance(path, str):
        if path and '/' not in path and '\\' not in path and '.' not in path.lstrip('.'):
            # A bare tag such as 'png' or '.png'
            return '.' + path.lstrip('.').lower()
        path = Path(path)

    return path.suffix.lower()


def format_from_extension(path: Union[str, Path]) -> ImageFormat:
    """Return the decoder format for *path*.

    Raises:
        UnsupportedFormat: If the extension is missing or unknown. The
            error carries the extension without its dot ('' when missing).
    """
    ext = normalize_extension(path)
    try:
        return EXTENSION_FORMATS[ext]
    except KeyError:
        raise UnsupportedFormat(ext.lstrip('.')) from None


def is_supported_input(path: Union[str, Path]) -> bool:
    """Check if file has an extension the decoders understand.

    Examples:
        >>> is_supported_input('render.JPG')
        True
        >>> is_supported_input('notes.txt')
        False
    """
    return Path(path).suffix.lower() in SUPPORTED_INPUT_EXTENSIONS


_JXL_CONTAINER = b'\x00\x00\x00\x0cJXL \r\n\x87\n'


def sniff_format(data: bytes) -> Optional[ImageFormat]:
    """Identify an encoded image by its magic bytes, or return ``None``."""
    head = bytes(data[:32])
    if head.startswith(b'\xff\xd8\xff'):
        return ImageFormat.JPEG
    if head.startswith(b'\x89PNG\r\n\x1a\n'):
        return ImageFormat.PNG
    if head[:4] == b'RIFF' and head[8:12] == b'WEBP':
        return ImageFormat.WEBP
    if head[4:8] == b'ftyp' and head[8:12] in {b'avif', b'avis'}:
        return ImageFormat.AVIF
    if head.startswith(b'\xff\x0a') or head.startswith(_JXL_CONTAINER):
        return ImageFormat.JXL
    if head[:4] in {b'II*\x00', b'MM\x00*', b'II+\x00', b'MM\x00+'}:
        return ImageFormat.TIFF
    return None


__all__ = [
    "EXTENSION_FORMATS",
    "ImageFormat",
    "SUPPORTED_INPUT_EXTENSIONS",
    "format_from_extension",
    "is_supported_input",
    "normalize_extension",
    "sniff_format",
]
