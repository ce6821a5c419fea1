"""Exception hierarchy shared by the decode, operation and encode layers.

Four families mirror the stages of a recode:

ConfigError
    Invalid quality, dithering level or dimension. Raised while building
    configuration objects, always before any file is touched.

DecodingError
    Unsupported input format, malformed data, library failures while
    decoding, and file access problems.

OperationError
    Colorspace / bit-type precondition violations and degenerate resize
    targets raised by the preprocessing engine.

EncoderError
    Unsupported target colorspace, library failures while encoding,
    dimensions that overflow a codec's native integer width.
"""
from __future__ import annotations

import contextlib
import logging
from typing import Iterable, Iterator, Sequence, Type

LOGGER = logging.getLogger("raster_recoder")


class RecoderError(Exception):
    """Base class for every error raised by :mod:`raster_recoder`."""


# -- configuration -----------------------------------------------------------


class ConfigError(RecoderError, ValueError):
    """Raised when a configuration value is outside its accepted range."""


class QualityOutOfBounds(ConfigError):
    def __init__(self, value: float, *, integral: bool = False) -> None:
        self.value = value
        self.integral = integral
        bounds = "0-100" if integral else "0.0-100.0"
        super().__init__(f"Quality value {value} is out of bounds ({bounds}).")

    def __reduce__(self):
        return _rebuild_quality, (self.value, self.integral)


class DitheringOutOfBounds(ConfigError):
    def __init__(self, value: float) -> None:
        self.value = value
        super().__init__(f"Dithering level {value} is out of bounds (0.0-1.0).")

    def __reduce__(self):
        return type(self), (self.value,)


class WidthIsZero(ConfigError):
    """Raised for a zero or negative target width."""

    def __init__(self, value: int = 0) -> None:
        self.value = value
        super().__init__("Width cannot be zero" if value == 0 else f"Width must be positive, got {value}")

    def __reduce__(self):
        return type(self), (self.value,)


class HeightIsZero(ConfigError):
    """Raised for a zero or negative target height."""

    def __init__(self, value: int = 0) -> None:
        self.value = value
        super().__init__("Height cannot be zero" if value == 0 else f"Height must be positive, got {value}")

    def __reduce__(self):
        return type(self), (self.value,)


# -- decoding ----------------------------------------------------------------


class DecodingError(RecoderError, RuntimeError):
    """Raised when an input cannot be turned into an :class:`~raster_recoder.image.Image`."""


class UnsupportedFormat(DecodingError):
    """The extension (or sniffed content) does not map to a known decoder."""

    def __init__(self, extension: str) -> None:
        self.extension = extension
        super().__init__(f"Unsupported format: {extension!r}")

    def __reduce__(self):
        return type(self), (self.extension,)


class ParsingError(DecodingError):
    """The container decoded but its layout cannot be represented."""


class NativeDecodeError(DecodingError):
    """A decoding library failed while reading pixel data."""


class DecodingIOError(DecodingError):
    """The source file could not be read."""


# -- operations --------------------------------------------------------------


class OperationError(RecoderError, RuntimeError):
    """Raised by the preprocessing engine."""


class WrongColorspace(OperationError):
    def __init__(self, expected: Sequence[object], actual: object) -> None:
        self.expected = tuple(expected)
        self.actual = actual
        super().__init__(
            f"Wrong colorspace: expected one of {_describe(self.expected)}, got {_describe_one(actual)}"
        )

    def __reduce__(self):
        return type(self), (self.expected, self.actual)


class UnsupportedType(OperationError):
    def __init__(self, expected: Sequence[object], actual: object) -> None:
        self.expected = tuple(expected)
        self.actual = actual
        super().__init__(
            f"Unsupported bit type: expected one of {_describe(self.expected)}, got {_describe_one(actual)}"
        )

    def __reduce__(self):
        return type(self), (self.expected, self.actual)


class ZeroDimension(OperationError):
    """A resize target collapsed to zero pixels."""


class OperationFailed(OperationError):
    """An operation's backing library raised while transforming pixels."""


# -- encoding ----------------------------------------------------------------


class EncoderError(RecoderError, RuntimeError):
    """Raised when an :class:`~raster_recoder.image.Image` cannot be encoded."""


class UnsupportedColorspace(EncoderError):
    def __init__(self, actual: object, supported: Iterable[object]) -> None:
        self.actual = actual
        self.supported = tuple(supported)
        super().__init__(
            f"Unsupported colorspace {_describe_one(actual)}; encoder accepts {_describe(self.supported)}"
        )

    def __reduce__(self):
        return type(self), (self.actual, self.supported)


class GenericEncodeError(EncoderError):
    """An encoding library failed; the message carries its payload."""


class EncodingIOError(EncoderError):
    """The encoded bytes could not be written."""


class DimensionOverflow(EncoderError):
    def __init__(self, width: int, height: int, limit: int, codec: str) -> None:
        self.width = width
        self.height = height
        self.limit = limit
        self.codec = codec
        super().__init__(f"{width}x{height} exceeds the {codec} dimension limit of {limit}")

    def __reduce__(self):
        return type(self), (self.width, self.height, self.limit, self.codec)


class CodecUnavailable(DecodingError, EncoderError):
    """An optional codec library is not installed."""

    def __init__(self, codec: str, package: str) -> None:
        self.codec = codec
        self.package = package
        super().__init__(f"{codec} support requires the optional '{package}' package")

    def __reduce__(self):
        return type(self), (self.codec, self.package)


def _rebuild_quality(value: float, integral: bool) -> QualityOutOfBounds:
    return QualityOutOfBounds(value, integral=integral)


def _describe_one(value: object) -> str:
    return getattr(value, "name", None) or str(value)


def _describe(values: Iterable[object]) -> str:
    return "[" + ", ".join(_describe_one(value) for value in values) + "]"


@contextlib.contextmanager
def native_boundary(error_cls: Type[RecoderError], context: str) -> Iterator[None]:
    """Convert any exception escaping a library call into *error_cls*.

    Errors already belonging to this package pass through untouched.
    ``KeyboardInterrupt`` and ``SystemExit`` are not intercepted so batch
    cancellation still works.
    """

    try:
        yield
    except RecoderError:
        raise
    except MemoryError as exc:
        raise error_cls(f"{context}: out of memory") from exc
    except Exception as exc:
        message = str(exc) or f"Unknown error occurred during {context}"
        LOGGER.debug("%s failed inside native boundary: %r", context, exc)
        raise error_cls(f"{context}: {message}") from exc


__all__ = [
    "CodecUnavailable",
    "ConfigError",
    "DecodingError",
    "DecodingIOError",
    "DimensionOverflow",
    "DitheringOutOfBounds",
    "EncoderError",
    "EncodingIOError",
    "GenericEncodeError",
    "HeightIsZero",
    "NativeDecodeError",
    "OperationError",
    "OperationFailed",
    "ParsingError",
    "QualityOutOfBounds",
    "RecoderError",
    "UnsupportedColorspace",
    "UnsupportedFormat",
    "UnsupportedType",
    "WidthIsZero",
    "WrongColorspace",
    "ZeroDimension",
    "native_boundary",
]
