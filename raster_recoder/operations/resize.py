"""Channel-wise resampling with internal alpha premultiplication."""
from __future__ import annotations

import dataclasses
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import ClassVar, List, Optional, Tuple

import numpy as np
from PIL import Image as PILImage

from ..config import FilterType, FitMode
from ..errors import OperationFailed, ZeroDimension, native_boundary
from ..image import BitType, ColorSpace, Image

LOGGER = logging.getLogger("raster_recoder")

# Pillow has no Mitchell-Netravali kernel; its bicubic (a=-0.5) is the closest match.
PIL_FILTERS = {
    FilterType.NEAREST: PILImage.Resampling.NEAREST,
    FilterType.BOX: PILImage.Resampling.BOX,
    FilterType.BILINEAR: PILImage.Resampling.BILINEAR,
    FilterType.HAMMING: PILImage.Resampling.HAMMING,
    FilterType.CATMULL_ROM: PILImage.Resampling.BICUBIC,
    FilterType.MITCHELL: PILImage.Resampling.BICUBIC,
    FilterType.LANCZOS3: PILImage.Resampling.LANCZOS,
}


@dataclasses.dataclass(frozen=True)
class Resize:
    width: int
    height: int
    filter_type: FilterType = FilterType.LANCZOS3
    fit: FitMode = FitMode.STRETCH

    name: ClassVar[str] = "resize"
    supported_types: ClassVar[Tuple[BitType, ...]] = (BitType.U8, BitType.U16, BitType.F32)
    supported_colorspaces: ClassVar[Tuple[ColorSpace, ...]] = tuple(ColorSpace)


def cover_box(width: int, height: int, target_width: int, target_height: int) -> Tuple[float, float, float, float]:
    """Centered source crop whose aspect ratio matches the target."""

    source_aspect = width / height
    target_aspect = target_width / target_height
    if source_aspect > target_aspect:
        crop_width = height * target_aspect
        left = (width - crop_width) / 2.0
        return (left, 0.0, left + crop_width, float(height))
    crop_height = width / target_aspect
    top = (height - crop_height) / 2.0
    return (0.0, top, float(width), top + crop_height)


def _resample(
    channel: np.ndarray,
    size: Tuple[int, int],
    resample: PILImage.Resampling,
    box: Optional[Tuple[float, float, float, float]],
) -> np.ndarray:
    plane = PILImage.fromarray(np.ascontiguousarray(channel, dtype=np.float32))
    return np.asarray(plane.resize(size, resample=resample, box=box), dtype=np.float32)


def resize_frame(
    channels: List[np.ndarray],
    operation: Resize,
    colorspace: ColorSpace,
    bit_type: BitType,
    *,
    max_workers: Optional[int] = None,
) -> np.ndarray:
    """Resample one frame's channel planes and return an ``H x W x C`` array."""

    height, width = channels[0].shape
    size = (operation.width, operation.height)
    box = cover_box(width, height, *size) if operation.fit is FitMode.COVER else None
    resample = PIL_FILTERS[operation.filter_type]
    maximum = bit_type.max_value

    planes = [channel.astype(np.float32) for channel in channels]
    alpha_index = colorspace.alpha_index
    if alpha_index is not None:
        coverage = planes[alpha_index] / maximum
        planes = [plane if i == alpha_index else plane * coverage for i, plane in enumerate(planes)]

    workers = max_workers or min(len(planes), os.cpu_count() or 1)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        resized = list(pool.map(lambda plane: _resample(plane, size, resample, box), planes))

    if alpha_index is not None:
        coverage = np.clip(resized[alpha_index], 0.0, maximum) / maximum
        safe = np.where(coverage > 0.0, coverage, 1.0)
        resized = [
            plane if i == alpha_index else np.where(coverage > 0.0, plane / safe, 0.0)
            for i, plane in enumerate(resized)
        ]

    stacked = np.stack(resized, axis=2)
    if bit_type is BitType.F32:
        return stacked.astype(np.float32)
    return np.clip(np.rint(stacked), 0, maximum).astype(bit_type.dtype)


def apply_resize(operation: Resize, image: Image) -> None:
    if operation.width <= 0 or operation.height <= 0:
        raise ZeroDimension(f"Resize target {operation.width}x{operation.height} has a zero dimension")
    if (operation.width, operation.height) == (image.width, image.height) and operation.fit is FitMode.STRETCH:
        LOGGER.debug("Resize target matches current size %sx%s; skipping", image.width, image.height)
        return
    LOGGER.debug(
        "Resizing from %sx%s to %sx%s with %s",
        image.width,
        image.height,
        operation.width,
        operation.height,
        operation.filter_type.value,
    )
    with native_boundary(OperationFailed, "resize"):
        frames = [
            resize_frame(image.channel_arrays(index), operation, image.colorspace, image.bit_type)
            for index in range(len(image.frames))
        ]
    image.set_frame_arrays(frames)
