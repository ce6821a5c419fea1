"""Encode dispatch: :class:`Image` plus :class:`EncoderConfig` in, bytes out.

Every codec path follows the same sequence:

1. reject colorspaces the codec cannot store (``UnsupportedColorspace``);
2. reject dimensions beyond the codec's native integer width
   (``DimensionOverflow``);
3. convert the frames to the layout the backing library expects;
4. call the library inside :func:`~raster_recoder.errors.native_boundary`
   so any failure surfaces as ``GenericEncodeError``.

Steps 1 and 2 always run before any library code is touched.
"""
from __future__ import annotations

import dataclasses
import io
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Sequence, Tuple, cast

import numpy as np
from PIL import Image as PILImage

from . import io_utils
from .config import (
    AvifOptions,
    Codec,
    EncoderConfig,
    JpegOptions,
    JxlOptions,
    OxiPngOptions,
    PngOptions,
    WebPOptions,
)
from .errors import (
    CodecUnavailable,
    DimensionOverflow,
    GenericEncodeError,
    UnsupportedColorspace,
    native_boundary,
)
from .image import BitType, ColorSpace, Image

LOGGER = logging.getLogger("raster_recoder")

_PIL_MODES = {
    ColorSpace.RGB: "RGB",
    ColorSpace.RGBA: "RGBA",
    ColorSpace.LUMA: "L",
    ColorSpace.LUMA_A: "LA",
    ColorSpace.CMYK: "CMYK",
    ColorSpace.YCBCR: "YCbCr",
}

# Native JPEG color spaces; anything unmapped is reported as "unknown".
_JPEG_MODES = {
    ColorSpace.RGB: "RGB",
    ColorSpace.RGBA: "RGB",
    ColorSpace.LUMA: "L",
    ColorSpace.CMYK: "CMYK",
    ColorSpace.YCBCR: "YCbCr",
}


def jpeg_color_mode(colorspace: ColorSpace) -> str:
    return _JPEG_MODES.get(colorspace, "unknown")


@dataclasses.dataclass(frozen=True)
class EncoderSpec:
    codec: Codec
    supported_colorspaces: Tuple[ColorSpace, ...]
    max_dimension: int
    encode: Callable[[Image, EncoderConfig], bytes]


def encode(image: Image, config: EncoderConfig) -> bytes:
    """Encode *image* according to *config* and return the encoded bytes.

    Raises:
        UnsupportedColorspace: The codec cannot store ``image.colorspace``.
        DimensionOverflow: The image is too large for the codec.
        CodecUnavailable: The codec's optional library is not installed.
        GenericEncodeError: The library failed while encoding.
    """
    spec = ENCODERS[config.codec]
    if image.colorspace not in spec.supported_colorspaces:
        raise UnsupportedColorspace(image.colorspace, spec.supported_colorspaces)
    if image.width > spec.max_dimension or image.height > spec.max_dimension:
        raise DimensionOverflow(image.width, image.height, spec.max_dimension, config.codec.value)
    LOGGER.debug(
        "Encoding %sx%s %s image with %s (quality %s)",
        image.width,
        image.height,
        image.colorspace.name,
        config.codec.value,
        config.quality,
    )
    return spec.encode(image, config)


def encode_to_file(image: Image, config: EncoderConfig, destination: Path) -> int:
    """Encode *image* and write it atomically; returns the number of bytes written."""

    data = encode(image, config)
    io_utils.write_bytes_atomic(Path(destination), data)
    return len(data)


# -- frame conversion --------------------------------------------------------


def pil_frames(image: Image, *, allow_16bit: bool = False) -> List[PILImage.Image]:
    """Pack every frame into a Pillow image in the colorspace's native mode."""

    mode = _PIL_MODES[image.colorspace]
    size = (image.width, image.height)
    frames: List[PILImage.Image] = []
    for index in range(len(image.frames)):
        if allow_16bit and image.bit_type is BitType.U16 and image.colorspace is ColorSpace.LUMA:
            samples = image.frame_array(index)[:, :, 0].astype("<u2")
            frames.append(PILImage.frombytes("I;16", size, samples.tobytes()))
            continue
        frames.append(PILImage.frombytes(mode, size, image.flatten_to_u8(index).tobytes()))
    if image.bit_type is not BitType.U8 and not (allow_16bit and image.colorspace is ColorSpace.LUMA):
        LOGGER.debug("Reducing %s samples to 8-bit for encoding", image.bit_type.name)
    return frames


def _metadata_kwargs(image: Image, *, exif: bool = True) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {}
    if image.metadata.icc_profile:
        kwargs["icc_profile"] = image.metadata.icc_profile
    if exif and image.metadata.exif:
        kwargs["exif"] = image.metadata.exif
    return kwargs


def _animation_kwargs(image: Image, frames: List[PILImage.Image]) -> Dict[str, Any]:
    if len(frames) < 2:
        return {}
    return {
        "save_all": True,
        "append_images": frames[1:],
        "duration": image.durations,
        "loop": 0,
    }


def _save(frames: List[PILImage.Image], pil_format: str, **kwargs: Any) -> bytes:
    buffer = io.BytesIO()
    frames[0].save(buffer, format=pil_format, **kwargs)
    return buffer.getvalue()


# -- codec adapters ----------------------------------------------------------


# ITU T.81 Annex K tables in natural order, scaled the way libjpeg scales them
_ANNEX_K_LUMA = (
    16, 11, 10, 16, 24, 40, 51, 61,
    12, 12, 14, 19, 26, 58, 60, 55,
    14, 13, 16, 24, 40, 57, 69, 56,
    14, 17, 22, 29, 51, 87, 80, 62,
    18, 22, 37, 56, 68, 109, 103, 77,
    24, 35, 55, 64, 81, 104, 113, 92,
    49, 64, 78, 87, 103, 121, 120, 101,
    72, 92, 95, 98, 112, 100, 103, 99,
)
_ANNEX_K_CHROMA = (
    17, 18, 24, 47, 99, 99, 99, 99,
    18, 21, 26, 66, 99, 99, 99, 99,
    24, 26, 56, 99, 99, 99, 99, 99,
    47, 66, 99, 99, 99, 99, 99, 99,
) + (99,) * 32


def scaled_qtable(base: Sequence[int], quality: int) -> List[int]:
    """Scale an 8x8 quantization table to *quality* (1-100)."""

    quality = min(100, max(1, int(quality)))
    scale = 5000 // quality if quality < 50 else 200 - 2 * quality
    return [min(255, max(1, (value * scale + 50) // 100)) for value in base]


def _encode_jpeg(image: Image, config: EncoderConfig) -> bytes:
    options = cast(JpegOptions, config.options)
    mode = jpeg_color_mode(image.colorspace)
    if mode == "unknown":
        raise UnsupportedColorspace(image.colorspace, tuple(_JPEG_MODES))
    if options.colorspace == "grayscale":
        mode = "L"
    if image.is_animated:
        LOGGER.warning("JPEG cannot store animation; keeping only the first of %s frames", len(image.frames))

    quality = int(round(config.quality))
    kwargs: Dict[str, Any] = {
        "optimize": options.optimize_coding,
        "progressive": options.progressive,
        "smooth": options.smoothing,
    }
    if options.chroma_quality is not None and mode != "L":
        kwargs["qtables"] = [
            scaled_qtable(_ANNEX_K_LUMA, quality),
            scaled_qtable(_ANNEX_K_CHROMA, options.chroma_quality),
        ]
    else:
        kwargs["quality"] = quality
    if options.colorspace == "rgb" and mode == "RGB":
        kwargs["keep_rgb"] = True
    if options.subsampling is not None:
        kwargs["subsampling"] = options.subsampling
    kwargs.update(_metadata_kwargs(image))

    with native_boundary(GenericEncodeError, "jpeg encoding"):
        frame = pil_frames(image)[0]
        if frame.mode != mode:
            frame = frame.convert(mode)
        return _save([frame], "JPEG", **kwargs)


def _encode_png_with(image: Image, options: PngOptions) -> bytes:
    with native_boundary(GenericEncodeError, "png encoding"):
        frames = pil_frames(image, allow_16bit=True)
        kwargs: Dict[str, Any] = {"compress_level": options.compress_level}
        kwargs.update(_metadata_kwargs(image))
        kwargs.update(_animation_kwargs(image, frames))
        return _save(frames, "PNG", **kwargs)


def _encode_png(image: Image, config: EncoderConfig) -> bytes:
    options = cast(PngOptions, config.options)
    return _encode_png_with(image, options)


def _encode_oxipng(image: Image, config: EncoderConfig) -> bytes:
    options = cast(OxiPngOptions, config.options)
    module = io_utils.oxipng
    if module is None:
        raise CodecUnavailable("oxipng", "pyoxipng")

    baseline = _encode_png_with(image, PngOptions(compress_level=9))
    kwargs: Dict[str, Any] = {"level": options.level}
    if options.strip_metadata:
        kwargs["strip"] = module.StripChunks.safe()
    if options.interlace:
        kwargs["interlace"] = module.Interlacing.Adam7

    with native_boundary(GenericEncodeError, "oxipng optimization"):
        optimized = module.optimize_from_memory(baseline, **kwargs)
    if len(optimized) >= len(baseline) and not options.interlace:
        LOGGER.debug("oxipng found no smaller encoding; keeping baseline PNG")
        return baseline
    return optimized


def _encode_webp(image: Image, config: EncoderConfig) -> bytes:
    options = cast(WebPOptions, config.options)
    kwargs: Dict[str, Any] = {
        "quality": int(round(config.quality)),
        "lossless": options.lossless,
        "method": options.method,
        "alpha_quality": options.alpha_quality,
        "exact": options.exact,
    }
    kwargs.update(_metadata_kwargs(image))
    with native_boundary(GenericEncodeError, "webp encoding"):
        frames = pil_frames(image)
        kwargs.update(_animation_kwargs(image, frames))
        return _save(frames, "WEBP", **kwargs)


def clear_transparent_color(frame: PILImage.Image) -> PILImage.Image:
    """Zero the color of fully transparent RGBA pixels."""

    if frame.mode != "RGBA":
        return frame
    pixels = np.array(frame)
    pixels[pixels[:, :, 3] == 0, :3] = 0
    return PILImage.fromarray(pixels)


def _encode_avif(image: Image, config: EncoderConfig) -> bytes:
    options = cast(AvifOptions, config.options)
    if not io_utils.CodecCapabilities().avif:
        raise CodecUnavailable("AVIF", "Pillow>=11.3 built with libavif")
    kwargs: Dict[str, Any] = {
        "quality": int(round(config.quality)),
        "speed": options.speed,
        "subsampling": options.subsampling,
    }
    if options.alpha_mode == "premultiplied":
        kwargs["alpha_premultiplied"] = True
    kwargs.update(_metadata_kwargs(image))
    with native_boundary(GenericEncodeError, "avif encoding"):
        frames = pil_frames(image)
        if options.alpha_mode == "unassociated-clean":
            frames = [clear_transparent_color(frame) for frame in frames]
        kwargs.update(_animation_kwargs(image, frames))
        return _save(frames, "AVIF", **kwargs)


def _encode_jxl(image: Image, config: EncoderConfig) -> bytes:
    options = cast(JxlOptions, config.options)
    if io_utils.pillow_jxl is None:
        raise CodecUnavailable("JPEG-XL", "pillow-jxl-plugin")
    if image.is_animated:
        LOGGER.warning("Writing only the first of %s frames to JPEG-XL", len(image.frames))
    kwargs: Dict[str, Any] = {
        "quality": int(round(config.quality)),
        "lossless": options.lossless,
        "effort": options.effort,
    }
    kwargs.update(_metadata_kwargs(image))
    with native_boundary(GenericEncodeError, "jpeg-xl encoding"):
        return _save(pil_frames(image)[:1], "JXL", **kwargs)


_RGB_FAMILY = (ColorSpace.RGB, ColorSpace.RGBA)
_PNG_FAMILY = (ColorSpace.RGB, ColorSpace.RGBA, ColorSpace.LUMA, ColorSpace.LUMA_A)

ENCODERS: Dict[Codec, EncoderSpec] = {
    Codec.JPEG: EncoderSpec(
        Codec.JPEG,
        (ColorSpace.RGB, ColorSpace.RGBA, ColorSpace.LUMA, ColorSpace.CMYK, ColorSpace.YCBCR),
        65535,
        _encode_jpeg,
    ),
    Codec.PNG: EncoderSpec(Codec.PNG, _PNG_FAMILY, 2**31 - 1, _encode_png),
    Codec.OXIPNG: EncoderSpec(Codec.OXIPNG, _PNG_FAMILY, 2**31 - 1, _encode_oxipng),
    Codec.WEBP: EncoderSpec(Codec.WEBP, _RGB_FAMILY, 16383, _encode_webp),
    Codec.AVIF: EncoderSpec(Codec.AVIF, _RGB_FAMILY, 65536, _encode_avif),
    Codec.JPEG_XL: EncoderSpec(Codec.JPEG_XL, _RGB_FAMILY, 1_073_741_823, _encode_jxl),
}


__all__ = [
    "ENCODERS",
    "EncoderSpec",
    "clear_transparent_color",
    "encode",
    "encode_to_file",
    "jpeg_color_mode",
    "pil_frames",
    "scaled_qtable",
]
