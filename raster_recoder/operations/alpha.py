"""Alpha premultiplication and its inverse."""
from __future__ import annotations

import dataclasses
from typing import ClassVar, Tuple

import numpy as np

from ..errors import WrongColorspace
from ..image import BitType, ColorSpace, Image

ALPHA_COLORSPACES = (ColorSpace.RGBA, ColorSpace.LUMA_A, ColorSpace.BGRA, ColorSpace.ARGB)
ALL_BIT_TYPES = (BitType.U8, BitType.U16, BitType.F32)


@dataclasses.dataclass(frozen=True)
class AlphaPremultiply:
    name: ClassVar[str] = "alpha-premultiply"
    supported_types: ClassVar[Tuple[BitType, ...]] = ALL_BIT_TYPES
    supported_colorspaces: ClassVar[Tuple[ColorSpace, ...]] = ALPHA_COLORSPACES


@dataclasses.dataclass(frozen=True)
class AlphaUnpremultiply:
    name: ClassVar[str] = "alpha-unpremultiply"
    supported_types: ClassVar[Tuple[BitType, ...]] = ALL_BIT_TYPES
    supported_colorspaces: ClassVar[Tuple[ColorSpace, ...]] = ALPHA_COLORSPACES


def premultiply_array(array: np.ndarray, alpha_index: int, bit_type: BitType) -> np.ndarray:
    """Scale every non-alpha channel of ``H x W x C`` *array* by its alpha."""

    maximum = bit_type.max_value
    work = array.astype(np.float64)
    alpha = work[:, :, alpha_index : alpha_index + 1] / maximum
    color = _color_mask(array.shape[2], alpha_index)
    work[:, :, color] *= alpha
    return _restore(work, bit_type)


def unpremultiply_array(array: np.ndarray, alpha_index: int, bit_type: BitType) -> np.ndarray:
    """Inverse of :func:`premultiply_array`; fully transparent pixels become zero."""

    maximum = bit_type.max_value
    work = array.astype(np.float64)
    alpha = work[:, :, alpha_index : alpha_index + 1] / maximum
    color = _color_mask(array.shape[2], alpha_index)
    safe = np.where(alpha > 0.0, alpha, 1.0)
    work[:, :, color] = np.where(alpha > 0.0, work[:, :, color] / safe, 0.0)
    return _restore(work, bit_type)


def _color_mask(channels: int, alpha_index: int) -> np.ndarray:
    mask = np.ones(channels, dtype=bool)
    mask[alpha_index] = False
    return mask


def _restore(work: np.ndarray, bit_type: BitType) -> np.ndarray:
    if bit_type is BitType.F32:
        return work.astype(np.float32)
    return np.clip(np.rint(work), 0, bit_type.max_value).astype(bit_type.dtype)


def apply_premultiply(operation: AlphaPremultiply, image: Image) -> None:
    alpha_index = image.colorspace.alpha_index
    if alpha_index is None:
        raise WrongColorspace(operation.supported_colorspaces, image.colorspace)
    image.set_frame_arrays(
        [premultiply_array(frame, alpha_index, image.bit_type) for frame in image.frame_arrays()]
    )


def apply_unpremultiply(operation: AlphaUnpremultiply, image: Image) -> None:
    alpha_index = image.colorspace.alpha_index
    if alpha_index is None:
        raise WrongColorspace(operation.supported_colorspaces, image.colorspace)
    image.set_frame_arrays(
        [unpremultiply_array(frame, alpha_index, image.bit_type) for frame in image.frame_arrays()]
    )
