"""The closed set of pixel operations the preprocessing engine can run.

Each operation is a frozen dataclass declaring ``name``,
``supported_types`` and ``supported_colorspaces``; the matching
``apply_*`` function mutates an :class:`~raster_recoder.image.Image` in place.
"""
from __future__ import annotations

from typing import Callable, Dict, Type, Union

from ..image import Image
from .alpha import AlphaPremultiply, AlphaUnpremultiply, apply_premultiply, apply_unpremultiply
from .icc import ApplyIcc, apply_icc
from .quantize import Quantize, apply_quantize
from .resize import Resize, apply_resize

Operation = Union[Resize, Quantize, AlphaPremultiply, AlphaUnpremultiply, ApplyIcc]

OPERATION_HANDLERS: Dict[Type, Callable[..., None]] = {
    Resize: apply_resize,
    Quantize: apply_quantize,
    AlphaPremultiply: apply_premultiply,
    AlphaUnpremultiply: apply_unpremultiply,
    ApplyIcc: apply_icc,
}


def run_operation(operation: Operation, image: Image) -> None:
    """Dispatch *operation* to its handler without any precondition checks."""

    OPERATION_HANDLERS[type(operation)](operation, image)


__all__ = [
    "AlphaPremultiply",
    "AlphaUnpremultiply",
    "ApplyIcc",
    "OPERATION_HANDLERS",
    "Operation",
    "Quantize",
    "Resize",
    "run_operation",
]
