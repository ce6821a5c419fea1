"""Decode dispatch: bytes or files in, normalized :class:`Image` out.

Every decoder hands back RGBA frames in one canonical layout per bit type
(8-bit as bytes, 16-bit native-endian, float as 32-bit), with grayscale,
gray+alpha, RGB and palette sources expanded and the EXIF orientation
already applied to the pixels.
"""
from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np
from PIL import Image as PILImage
from PIL import ImageSequence

from . import io_utils
from .errors import (
    CodecUnavailable,
    DecodingIOError,
    NativeDecodeError,
    ParsingError,
    UnsupportedFormat,
    native_boundary,
)
from .formats import ImageFormat, format_from_extension, sniff_format
from .image import BitType, ColorSpace, Image, Metadata

LOGGER = logging.getLogger("raster_recoder")

ORIENTATION_TAG = 0x0112

Source = Union[str, Path, bytes, bytearray, memoryview]

_PIL_FORMAT_NAMES = {
    ImageFormat.JPEG: "JPEG",
    ImageFormat.PNG: "PNG",
    ImageFormat.WEBP: "WEBP",
    ImageFormat.AVIF: "AVIF",
    # the JPEG-XL plugin registers under its own name; let Pillow sniff
    ImageFormat.JXL: None,
    ImageFormat.TIFF: "TIFF",
}

# Pillow modes that need its own conversion before they can be read as arrays.
_PIL_EXPAND_TO_RGBA = {"P", "PA", "CMYK", "YCbCr", "LAB", "HSV", "RGBa", "RGBX", "La", "1"}
_PIL_16BIT_GRAY = {"I;16", "I;16L", "I;16B", "I;16N"}
_ANIMATED_FORMATS = frozenset({ImageFormat.PNG, ImageFormat.WEBP, ImageFormat.AVIF, ImageFormat.JXL})


def decode(source: Source, format: Optional[Union[str, ImageFormat]] = None) -> Image:  # pylint: disable=redefined-builtin
    """Decode a path or an in-memory buffer.

    Args:
        source: Filesystem path, or the encoded bytes themselves.
        format: Optional explicit format tag (``"png"``, ``ImageFormat.PNG``...).
            Paths default to their extension, buffers to content sniffing.

    Raises:
        UnsupportedFormat: The format cannot be determined or is unknown.
        DecodingIOError: The file could not be read.
        NativeDecodeError: The decoding library rejected the data.
        ParsingError: The decoded layout cannot be represented.
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        return decode_bytes(bytes(source), format)
    return decode_file(Path(source), format)


def decode_file(path: Path, format: Optional[Union[str, ImageFormat]] = None) -> Image:  # pylint: disable=redefined-builtin
    path = Path(path)
    image_format = ImageFormat.from_tag(format) if format is not None else format_from_extension(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise DecodingIOError(f"Unable to read {path}: {exc}") from exc
    return _dispatch(data, image_format, str(path))


def decode_bytes(data: bytes, format: Optional[Union[str, ImageFormat]] = None) -> Image:  # pylint: disable=redefined-builtin
    if format is not None:
        image_format = ImageFormat.from_tag(format)
    else:
        sniffed = sniff_format(data)
        if sniffed is None:
            raise UnsupportedFormat("unknown")
        image_format = sniffed
    return _dispatch(data, image_format, "<memory>")


def _dispatch(data: bytes, image_format: ImageFormat, name: str) -> Image:
    decoder = _DECODERS[image_format]
    LOGGER.debug("Decoding %s as %s", name, image_format.value)
    return decoder(data, image_format, name)


# -- Pillow-backed decoders --------------------------------------------------


def _decode_pillow(data: bytes, image_format: ImageFormat, name: str) -> Image:
    with native_boundary(NativeDecodeError, f"{image_format.value} decode of {name}"):
        pil_format = _PIL_FORMAT_NAMES[image_format]
        formats = [pil_format] if pil_format else None
        with PILImage.open(io.BytesIO(data), formats=formats) as handle:
            handle.load()
            exif = handle.getexif()
            orientation = int(exif.get(ORIENTATION_TAG, 1) or 1)
            icc_profile = handle.info.get("icc_profile")

            arrays: List[np.ndarray] = []
            durations: List[int] = []
            bit_types: List[BitType] = []
            frames = ImageSequence.Iterator(handle) if _is_animation(handle, image_format) else [handle]
            for frame in frames:
                array, bit_type = pil_frame_to_rgba(frame)
                arrays.append(apply_orientation(array, orientation))
                bit_types.append(bit_type)
                durations.append(int(frame.info.get("duration", 0) or 0))

            raw_exif = None
            if len(exif):
                exif[ORIENTATION_TAG] = 1
                raw_exif = exif.tobytes()

    if len(set(bit_types)) > 1:
        raise ParsingError(f"{name}: frames mix sample types {sorted(b.name for b in set(bit_types))}")
    metadata = Metadata(orientation=1, icc_profile=icc_profile or None, exif=raw_exif)
    try:
        return Image.from_frames(arrays, ColorSpace.RGBA, durations=durations, bit_type=bit_types[0], metadata=metadata)
    except ValueError as exc:
        raise ParsingError(f"{name}: {exc}") from exc


def _is_animation(handle: PILImage.Image, image_format: ImageFormat) -> bool:
    """Only animation containers contribute extra frames.

    Multi-picture JPEGs (MPO previews, stereo pairs, gain maps) and
    multi-page TIFFs decode as their first picture.
    """
    return image_format in _ANIMATED_FORMATS and bool(getattr(handle, "is_animated", False))


def _decode_avif(data: bytes, image_format: ImageFormat, name: str) -> Image:
    if not io_utils.CodecCapabilities().avif:
        raise CodecUnavailable("AVIF", "Pillow>=11.3 built with libavif")
    return _decode_pillow(data, image_format, name)


def _decode_jxl(data: bytes, image_format: ImageFormat, name: str) -> Image:
    if io_utils.pillow_jxl is None:
        raise CodecUnavailable("JPEG-XL", "pillow-jxl-plugin")
    return _decode_pillow(data, image_format, name)


def pil_frame_to_rgba(frame: PILImage.Image) -> Tuple[np.ndarray, BitType]:
    """Convert one Pillow frame to an ``H x W x 4`` array and its bit type."""

    mode = frame.mode
    if mode in _PIL_EXPAND_TO_RGBA:
        return np.asarray(frame.convert("RGBA")), BitType.U8
    if mode == "RGBA":
        return np.asarray(frame), BitType.U8
    if mode == "RGB":
        return expand_to_rgba(np.asarray(frame), BitType.U8), BitType.U8
    if mode == "L":
        return expand_to_rgba(np.asarray(frame), BitType.U8), BitType.U8
    if mode == "LA":
        return expand_to_rgba(np.asarray(frame), BitType.U8), BitType.U8
    if mode in _PIL_16BIT_GRAY:
        gray = np.asarray(frame).astype(np.uint16)
        return expand_to_rgba(gray, BitType.U16), BitType.U16
    if mode == "I":
        gray = np.clip(np.asarray(frame), 0, 65535).astype(np.uint16)
        return expand_to_rgba(gray, BitType.U16), BitType.U16
    if mode == "F":
        return expand_to_rgba(np.asarray(frame, dtype=np.float32), BitType.F32), BitType.F32
    raise ParsingError(f"Unsupported Pillow image mode '{mode}'")


# -- TIFF --------------------------------------------------------------------

# uncompressed, deflate and legacy deflate decode without imagecodecs
_BUILTIN_TIFF_COMPRESSIONS = frozenset({1, 8, 32946})


def _decode_tiff(data: bytes, image_format: ImageFormat, name: str) -> Image:
    tiff_module = io_utils.tifffile
    if tiff_module is None:
        LOGGER.debug("tifffile not available; decoding %s through Pillow at 8-bit precision", name)
        return _decode_pillow(data, image_format, name)

    with native_boundary(NativeDecodeError, f"tiff decode of {name}"):
        with tiff_module.TiffFile(io.BytesIO(data)) as tif:
            page = tif.pages[0]
            codec_required = int(page.compression) not in _BUILTIN_TIFF_COMPRESSIONS
            if codec_required and io_utils.imagecodecs is None:
                LOGGER.debug("imagecodecs not available for %s compression; decoding %s through Pillow", page.compression, name)
                array = None
            else:
                array = page.asarray()
            photometric = int(page.photometric)
            planar_separate = int(page.planarconfig) == 2
            colormap = page.colormap
            orientation = _tag_value(page, "Orientation", 1)
            icc_profile = _tag_value(page, "InterColorProfile", None)

    if array is None:
        return _decode_pillow(data, image_format, name)

    if planar_separate and array.ndim == 3:
        array = np.moveaxis(array, 0, -1)
    if photometric == 3 and colormap is not None:  # palette
        array = np.moveaxis(np.asarray(colormap)[:, array], 0, -1)

    array, bit_type = _normalize_tiff_samples(array, name)
    if photometric == 0 and array.ndim == 2:  # min-is-white
        array = (bit_type.max_value - array).astype(bit_type.dtype)
    if photometric == 5:  # separated (CMYK)
        array = _cmyk_to_rgb(array, bit_type)

    rgba = expand_to_rgba(array, bit_type)
    rgba = apply_orientation(rgba, int(orientation or 1))
    metadata = Metadata(orientation=1, icc_profile=bytes(icc_profile) if icc_profile else None)
    return Image.from_array(rgba, ColorSpace.RGBA, bit_type=bit_type, metadata=metadata)


def _tag_value(page, name: str, default):
    tag = page.tags.get(name)
    if tag is None:
        return default
    return tag.value


def _normalize_tiff_samples(array: np.ndarray, name: str) -> Tuple[np.ndarray, BitType]:
    if array.dtype == np.bool_:
        return array.astype(np.uint8) * 255, BitType.U8
    if array.dtype == np.uint8:
        return array, BitType.U8
    if array.dtype.kind == "u" and array.dtype.itemsize == 2:
        return array.astype(np.uint16), BitType.U16
    if array.dtype.kind == "f":
        return array.astype(np.float32), BitType.F32
    raise ParsingError(f"{name}: unsupported TIFF sample type {array.dtype}")


def _cmyk_to_rgb(array: np.ndarray, bit_type: BitType) -> np.ndarray:
    if array.ndim != 3 or array.shape[2] < 4:
        raise ParsingError("CMYK TIFF must carry four channels")
    maximum = bit_type.max_value
    cmyk = array[:, :, :4].astype(np.float32) / maximum
    rgb = (1.0 - cmyk[:, :, :3]) * (1.0 - cmyk[:, :, 3:4])
    if bit_type is BitType.F32:
        return rgb.astype(np.float32)
    return np.rint(rgb * maximum).astype(bit_type.dtype)


# -- shared helpers ----------------------------------------------------------


def expand_to_rgba(array: np.ndarray, bit_type: BitType) -> np.ndarray:
    """Expand gray, gray+alpha or RGB samples to four channels.

    Missing alpha is filled with the bit type's opaque value.
    """

    if array.ndim == 2:
        array = array[:, :, None]
    channels = array.shape[2]
    opaque = np.full(array.shape[:2] + (1,), bit_type.max_value, dtype=bit_type.dtype)
    if channels == 1:
        return np.concatenate([array, array, array, opaque], axis=2).astype(bit_type.dtype)
    if channels == 2:
        gray, alpha = array[:, :, :1], array[:, :, 1:2]
        return np.concatenate([gray, gray, gray, alpha], axis=2).astype(bit_type.dtype)
    if channels == 3:
        return np.concatenate([array, opaque], axis=2).astype(bit_type.dtype)
    if channels == 4:
        return array.astype(bit_type.dtype)
    raise ParsingError(f"Cannot expand {channels}-channel data to RGBA")


def apply_orientation(array: np.ndarray, orientation: int) -> np.ndarray:
    """Rotate / flip ``H x W [x C]`` pixels so EXIF *orientation* displays upright."""

    transform = _ORIENTATION_TRANSFORMS.get(orientation)
    if transform is None:
        if orientation != 1:
            LOGGER.debug("Ignoring invalid EXIF orientation %s", orientation)
        return array
    return np.ascontiguousarray(transform(array))


def _swap_axes(array: np.ndarray) -> np.ndarray:
    return np.swapaxes(array, 0, 1)


_ORIENTATION_TRANSFORMS: Dict[int, Callable[[np.ndarray], np.ndarray]] = {
    2: lambda a: a[:, ::-1],
    3: lambda a: a[::-1, ::-1],
    4: lambda a: a[::-1],
    5: _swap_axes,
    6: lambda a: np.rot90(a, k=-1),
    7: lambda a: _swap_axes(a)[::-1, ::-1],
    8: lambda a: np.rot90(a, k=1),
}

_DECODERS: Dict[ImageFormat, Callable[[bytes, ImageFormat, str], Image]] = {
    ImageFormat.JPEG: _decode_pillow,
    ImageFormat.PNG: _decode_pillow,
    ImageFormat.WEBP: _decode_pillow,
    ImageFormat.AVIF: _decode_avif,
    ImageFormat.JXL: _decode_jxl,
    ImageFormat.TIFF: _decode_tiff,
}


__all__ = [
    "apply_orientation",
    "decode",
    "decode_bytes",
    "decode_file",
    "expand_to_rgba",
    "pil_frame_to_rgba",
]
