"""Palette reduction with a palette shared by every frame.

Quality is a target, not a color count: libimagequant picks the smallest
palette (up to 256 entries) that reaches it. Dithering is error diffusion
scaled by the dithering level.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import ClassVar, List, Sequence, Tuple

import numpy as np

from .. import io_utils
from ..errors import OperationFailed, native_boundary
from ..image import BitType, ColorSpace, Image

LOGGER = logging.getLogger("raster_recoder")

MAX_COLORS = 256


@dataclasses.dataclass(frozen=True)
class Quantize:
    quality: int = 100
    dithering: float = 1.0

    name: ClassVar[str] = "quantize"
    supported_types: ClassVar[Tuple[BitType, ...]] = (BitType.U8,)
    supported_colorspaces: ClassVar[Tuple[ColorSpace, ...]] = (ColorSpace.RGBA,)


def quantize_frames(frames: Sequence[np.ndarray], quality: int, dithering: float) -> Tuple[List[np.ndarray], np.ndarray]:
    """Remap ``H x W x 4`` uint8 *frames* against one palette.

    The frames are stacked vertically so a single histogram, and therefore
    a single palette, covers all of them. Returns the remapped frames and
    the ``K x 4`` palette.
    """

    backend = io_utils.imagequant
    if backend is None:
        raise OperationFailed("quantization requires the optional 'imagequant' package")
    stacked = np.ascontiguousarray(np.concatenate(list(frames), axis=0), dtype=np.uint8)
    height, width = stacked.shape[:2]
    indices, palette = backend.quantize_raw_rgba_bytes(
        stacked.tobytes(),
        width,
        height,
        dithering_level=float(dithering),
        max_colors=MAX_COLORS,
        min_quality=0,
        max_quality=int(quality),
    )
    entries = np.asarray(palette, dtype=np.uint8).reshape(-1, 4)
    index_map = np.frombuffer(indices, dtype=np.uint8).reshape(height, width)
    remapped = entries[index_map]
    return np.split(remapped, len(frames), axis=0), entries


def apply_quantize(operation: Quantize, image: Image) -> None:
    frames: List[np.ndarray] = image.frame_arrays()
    with native_boundary(OperationFailed, "quantize"):
        remapped, palette = quantize_frames(frames, operation.quality, operation.dithering)
    LOGGER.debug(
        "Quantized %s frame(s) to a shared %s-color palette (quality %s, dithering %.2f)",
        len(frames),
        len(palette),
        operation.quality,
        operation.dithering,
    )
    image.set_frame_arrays(remapped)
