"""Tests for the exception hierarchy."""

from __future__ import annotations

import pickle
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

try:
    from .documentation import documents
except ImportError:  # pragma: no cover - fallback for direct execution
    from tests.documentation import documents

pytest.importorskip("numpy")

from raster_recoder.errors import (  # noqa: E402  # pylint: disable=wrong-import-position
    CodecUnavailable,
    DimensionOverflow,
    DitheringOutOfBounds,
    GenericEncodeError,
    HeightIsZero,
    QualityOutOfBounds,
    UnsupportedColorspace,
    UnsupportedFormat,
    UnsupportedType,
    WidthIsZero,
    WrongColorspace,
)
from raster_recoder.image import BitType, ColorSpace  # noqa: E402  # pylint: disable=wrong-import-position


@documents("Errors raised in worker processes survive the trip back to the parent")
@pytest.mark.parametrize(
    "error",
    [
        QualityOutOfBounds(120, integral=True),
        QualityOutOfBounds(-1.5),
        DitheringOutOfBounds(2.0),
        WidthIsZero(),
        HeightIsZero(-3),
        UnsupportedFormat("gif"),
        WrongColorspace([ColorSpace.RGBA], ColorSpace.LUMA),
        UnsupportedType([BitType.U8], BitType.U16),
        UnsupportedColorspace(ColorSpace.LUMA_A, [ColorSpace.RGB, ColorSpace.RGBA]),
        DimensionOverflow(20000, 1, 16383, "webp"),
        CodecUnavailable("jpeg_xl", "pillow-jxl-plugin"),
        GenericEncodeError("Unknown error occurred during png encoding"),
    ],
    ids=lambda error: type(error).__name__,
)
def test_errors_pickle_round_trip(error):
    restored = pickle.loads(pickle.dumps(error))

    assert type(restored) is type(error)
    assert str(restored) == str(error)
    assert vars(restored) == vars(error)


def test_dimension_overflow_keeps_codec():
    restored = pickle.loads(pickle.dumps(DimensionOverflow(20000, 1, 16383, "webp")))

    assert (restored.width, restored.height, restored.limit, restored.codec) == (20000, 1, 16383, "webp")
