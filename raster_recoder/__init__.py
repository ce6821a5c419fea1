"""Raster recoding toolkit: decode, preprocess and re-encode images.

Images are decoded into one uniform model, run through an ordered
preprocessing pipeline and handed to a codec-specific encoder.

Module Organization
-------------------

image
    Uniform image model: frames of channel buffers tagged with bit type
    and colorspace, plus orientation / ICC / EXIF metadata.

config
    Immutable encoder, resize and quantization configuration with
    range validation at construction time.

decoders
    Extension- or content-based decode dispatch (JPEG, PNG, WebP, AVIF,
    JPEG-XL, TIFF) normalizing every input to RGBA.

operations
    Resize, quantize, alpha premultiply / unpremultiply and ICC apply.

preprocessing
    Builds the position-ordered pipeline from command-line occurrences
    and executes it with colorspace / bit-type precondition checks.

encoders
    Codec dispatch table with colorspace and dimension checks ahead of
    every library call.

pipeline
    Batch processing: file discovery, output naming, backups, worker
    pool, progress reporting and per-file error isolation.

cli
    Command-line interface.

Example Usage
-------------

    from pathlib import Path
    from raster_recoder import Codec, EncoderConfig, QuantizationConfig, process_single_image

    config = EncoderConfig.build(80, Codec.WEBP, width=1200)
    process_single_image(Path("hero.png"), Path("hero.webp"), config)

    palette = EncoderConfig.build(100, Codec.OXIPNG).with_quantization(QuantizationConfig(quality=60))
"""
from __future__ import annotations

import logging

from .cli import main, parse_args, run_pipeline
from .config import (
    AvifOptions,
    Codec,
    EncoderConfig,
    FilterType,
    FitMode,
    JpegOptions,
    JxlOptions,
    OxiPngOptions,
    PngOptions,
    QuantizationConfig,
    ResizeConfig,
    ResizeValue,
    WebPOptions,
)
from .decoders import decode, decode_bytes, decode_file
from .encoders import encode, encode_to_file
from .errors import (
    CodecUnavailable,
    ConfigError,
    DecodingError,
    DitheringOutOfBounds,
    EncoderError,
    HeightIsZero,
    OperationError,
    QualityOutOfBounds,
    RecoderError,
    UnsupportedColorspace,
    UnsupportedFormat,
    UnsupportedType,
    WidthIsZero,
    WrongColorspace,
)
from .image import BitType, Channel, ColorSpace, Frame, Image, Metadata
from .io_utils import CodecCapabilities, ProcessingContext
from .pipeline import (
    BatchSummary,
    collect_files,
    optimize_bytes,
    output_path,
    process_batch,
    process_single_image,
)
from .preprocessing import OperationRequest, PipelineSettings, RequestKind, build_pipeline, execute

LOGGER = logging.getLogger("raster_recoder")

__all__ = [
    "AvifOptions",
    "BatchSummary",
    "BitType",
    "Channel",
    "Codec",
    "CodecCapabilities",
    "CodecUnavailable",
    "ColorSpace",
    "ConfigError",
    "DecodingError",
    "DitheringOutOfBounds",
    "EncoderConfig",
    "EncoderError",
    "FilterType",
    "FitMode",
    "Frame",
    "HeightIsZero",
    "Image",
    "JpegOptions",
    "JxlOptions",
    "Metadata",
    "OperationError",
    "OperationRequest",
    "OxiPngOptions",
    "PipelineSettings",
    "PngOptions",
    "ProcessingContext",
    "QualityOutOfBounds",
    "QuantizationConfig",
    "RecoderError",
    "RequestKind",
    "ResizeConfig",
    "ResizeValue",
    "UnsupportedColorspace",
    "UnsupportedFormat",
    "UnsupportedType",
    "WebPOptions",
    "WidthIsZero",
    "WrongColorspace",
    "build_pipeline",
    "collect_files",
    "decode",
    "decode_bytes",
    "decode_file",
    "encode",
    "encode_to_file",
    "execute",
    "main",
    "optimize_bytes",
    "output_path",
    "parse_args",
    "process_batch",
    "process_single_image",
    "run_pipeline",
]
