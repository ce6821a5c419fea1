"""Ordered preprocessing: build a position-keyed pipeline and execute it.

The command line lets ``--resize``, ``--quantization``, ``--icc`` and
``--premultiply`` repeat and interleave. Each occurrence becomes an
:class:`OperationRequest` carrying its argument position; the builder turns
those into a list of ``(position, operation)`` pairs sorted by position,
which is the order the engine executes them in.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .config import EncoderConfig, FilterType, FitMode, QuantizationConfig, ResizeValue
from .errors import UnsupportedType, WrongColorspace
from .image import Image
from .operations import (
    AlphaPremultiply,
    AlphaUnpremultiply,
    ApplyIcc,
    Operation,
    Quantize,
    Resize,
    run_operation,
)

LOGGER = logging.getLogger("raster_recoder")

# The CLI spaces argument positions this far apart so the slot right after
# every operation stays free for an implicit AlphaUnpremultiply.
POSITION_STRIDE = 2

# ``--premultiply`` brackets the operation flag that directly follows it on
# the command line, i.e. the next position. If the CLI grammar changes how
# positions are assigned, this offset must change with it.
PREMULTIPLY_OFFSET = POSITION_STRIDE

Pipeline = List[Tuple[int, Operation]]


class RequestKind(enum.Enum):
    RESIZE = "resize"
    QUANTIZATION = "quantization"
    PREMULTIPLY = "premultiply"
    ICC = "icc"


@dataclasses.dataclass(frozen=True)
class OperationRequest:
    """One occurrence of an ordered operation flag.

    Attributes:
        position: Argument position of the occurrence; unique per request.
        kind: Which flag it was.
        value: :class:`ResizeValue` for resizes, the integer quality for
            quantizations, optional target ICC bytes for ``icc``; unused for
            premultiply.
    """

    position: int
    kind: RequestKind
    value: Union[ResizeValue, int, bytes, None] = None


@dataclasses.dataclass(frozen=True)
class PipelineSettings:
    """Knobs shared by every occurrence of a flag."""

    filter_type: FilterType = FilterType.LANCZOS3
    fit: FitMode = FitMode.STRETCH
    dithering: float = 1.0


def build_pipeline(
    requests: Iterable[OperationRequest],
    width: int,
    height: int,
    settings: Optional[PipelineSettings] = None,
) -> Pipeline:
    """Turn flag occurrences into an execution-ordered pipeline.

    Resize values are resolved against the dimensions the image will have
    when that resize runs, so ``--resize 50% --resize 50%`` quarters it.

    A premultiply request at position ``p`` brackets the operation at
    ``p + PREMULTIPLY_OFFSET``: ``AlphaPremultiply`` takes ``p`` and
    ``AlphaUnpremultiply`` the slot right after the bracketed operation.
    Without a neighbour the request is logged and ignored.
    """

    settings = settings or PipelineSettings()
    ordered = sorted(requests, key=lambda request: request.position)
    slots: Dict[int, Operation] = {}

    current = (width, height)
    for request in ordered:
        if request.kind is RequestKind.PREMULTIPLY:
            continue
        assert request.position not in slots, f"Duplicate operation position {request.position}"
        operation, current = _create_operation(request, current, settings)
        slots[request.position] = operation

    for request in ordered:
        if request.kind is not RequestKind.PREMULTIPLY:
            continue
        neighbour = request.position + PREMULTIPLY_OFFSET
        bracketed = slots.get(neighbour)
        if bracketed is None or isinstance(bracketed, (AlphaPremultiply, AlphaUnpremultiply)):
            LOGGER.warning("No operation found for premultiply at index %s", request.position)
            continue
        unpremultiply_slot = neighbour + 1
        assert unpremultiply_slot not in slots, (
            f"Position {unpremultiply_slot} is already occupied by {slots[unpremultiply_slot]!r}"
        )
        assert request.position not in slots, f"Duplicate operation position {request.position}"
        slots[request.position] = AlphaPremultiply()
        slots[unpremultiply_slot] = AlphaUnpremultiply()

    pipeline = sorted(slots.items(), key=lambda item: item[0])
    LOGGER.debug("Built pipeline: %s", ", ".join(f"{pos}:{op.name}" for pos, op in pipeline))
    return pipeline


def _create_operation(
    request: OperationRequest,
    size: Tuple[int, int],
    settings: PipelineSettings,
) -> Tuple[Operation, Tuple[int, int]]:
    if request.kind is RequestKind.RESIZE:
        value = request.value
        if not isinstance(value, ResizeValue):
            raise TypeError(f"Resize request needs a ResizeValue, got {value!r}")
        target_width, target_height = value.map_dimensions(*size)
        resize = Resize(target_width, target_height, settings.filter_type, settings.fit)
        return resize, (target_width, target_height)
    if request.kind is RequestKind.QUANTIZATION:
        quality = 100 if request.value is None else int(request.value)  # type: ignore[arg-type]
        validated = QuantizationConfig(quality=quality, dithering=settings.dithering)
        return Quantize(validated.quality, validated.dithering), size
    if request.kind is RequestKind.ICC:
        profile = request.value if isinstance(request.value, (bytes, bytearray)) else None
        return ApplyIcc(bytes(profile) if profile is not None else None), size
    raise ValueError(f"Unsupported request kind {request.kind}")


def pipeline_from_config(config: EncoderConfig, width: int, height: int) -> Pipeline:
    """Fixed-order pipeline for library callers: resize, then quantize."""

    pipeline: Pipeline = []
    if config.resize is not None and not config.resize.is_noop:
        target_width, target_height = config.resize.target_dimensions(width, height)
        pipeline.append(
            (0, Resize(target_width, target_height, config.resize.filter_type, config.resize.fit))
        )
    if config.quantization is not None:
        pipeline.append(
            (POSITION_STRIDE, Quantize(config.quantization.quality, config.quantization.dithering))
        )
    return pipeline


def check_preconditions(operation: Operation, image: Image) -> None:
    """Reject images outside the operation's declared colorspaces / bit types."""

    if image.colorspace not in operation.supported_colorspaces:
        raise WrongColorspace(operation.supported_colorspaces, image.colorspace)
    if image.bit_type not in operation.supported_types:
        raise UnsupportedType(operation.supported_types, image.bit_type)


def execute(pipeline: Sequence[Tuple[int, Operation]], image: Image) -> None:
    """Run *pipeline* on *image* in place, strictly in order.

    Raises:
        WrongColorspace: An operation does not accept the current colorspace.
        UnsupportedType: An operation does not accept the current bit type.
        OperationError: An operation failed while transforming pixels.
    """

    for position, operation in pipeline:
        check_preconditions(operation, image)
        LOGGER.debug("Running %s at position %s", operation.name, position)
        run_operation(operation, image)
        image.validate()


__all__ = [
    "OperationRequest",
    "POSITION_STRIDE",
    "PREMULTIPLY_OFFSET",
    "Pipeline",
    "PipelineSettings",
    "RequestKind",
    "build_pipeline",
    "check_preconditions",
    "execute",
    "pipeline_from_config",
]
