"""Validated, immutable descriptions of the desired output."""
from __future__ import annotations

import dataclasses
import enum
from typing import Optional, Tuple, Union

from .errors import (
    DitheringOutOfBounds,
    HeightIsZero,
    QualityOutOfBounds,
    WidthIsZero,
)


class Codec(enum.Enum):
    JPEG = "mozjpeg"
    PNG = "png"
    OXIPNG = "oxipng"
    WEBP = "webp"
    AVIF = "avif"
    JPEG_XL = "jpeg_xl"

    @property
    def extension(self) -> str:
        return _CODEC_EXTENSIONS[self]

    @classmethod
    def from_name(cls, name: str) -> "Codec":
        key = name.strip().lower().replace("-", "_")
        try:
            return _CODEC_ALIASES[key]
        except KeyError:
            raise ValueError(f"Unknown codec '{name}' (choose from {', '.join(sorted(_CODEC_ALIASES))})") from None


_CODEC_EXTENSIONS = {
    Codec.JPEG: "jpg",
    Codec.PNG: "png",
    Codec.OXIPNG: "png",
    Codec.WEBP: "webp",
    Codec.AVIF: "avif",
    Codec.JPEG_XL: "jxl",
}

_CODEC_ALIASES = {
    "mozjpeg": Codec.JPEG,
    "jpg": Codec.JPEG,
    "jpeg": Codec.JPEG,
    "png": Codec.PNG,
    "oxipng": Codec.OXIPNG,
    "webp": Codec.WEBP,
    "avif": Codec.AVIF,
    "jxl": Codec.JPEG_XL,
    "jpeg_xl": Codec.JPEG_XL,
}

CODEC_NAMES = tuple(sorted(_CODEC_ALIASES))


class FilterType(enum.Enum):
    NEAREST = "nearest"
    BOX = "box"
    BILINEAR = "bilinear"
    HAMMING = "hamming"
    CATMULL_ROM = "catmull-rom"
    MITCHELL = "mitchell"
    LANCZOS3 = "lanczos3"

    @classmethod
    def from_name(cls, name: str) -> "FilterType":
        lowered = name.strip().lower()
        if lowered == "catrom":
            return cls.CATMULL_ROM
        return cls(lowered)


class FitMode(enum.Enum):
    """How a resize reconciles a target whose aspect differs from the source."""

    STRETCH = "stretch"
    COVER = "cover"


def _check_quality(value: float, *, integral: bool = False) -> None:
    if not 0.0 <= value <= 100.0:
        raise QualityOutOfBounds(value, integral=integral)


@dataclasses.dataclass(frozen=True)
class QuantizationConfig:
    """Palette reduction parameters.

    Attributes:
        quality: Palette fidelity in ``0..100``; higher keeps more colors.
        dithering: Error diffusion strength in ``0.0..1.0``; ``0`` disables it.
    """

    quality: int = 100
    dithering: float = 1.0

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        _check_quality(self.quality, integral=True)
        if not 0.0 <= self.dithering <= 1.0:
            raise DitheringOutOfBounds(self.dithering)


@dataclasses.dataclass(frozen=True)
class ResizeConfig:
    width: Optional[int] = None
    height: Optional[int] = None
    filter_type: FilterType = FilterType.LANCZOS3
    fit: FitMode = FitMode.STRETCH

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        if self.width is not None and self.width <= 0:
            raise WidthIsZero(self.width)
        if self.height is not None and self.height <= 0:
            raise HeightIsZero(self.height)

    @property
    def is_noop(self) -> bool:
        return self.width is None and self.height is None

    def target_dimensions(self, width: int, height: int) -> Tuple[int, int]:
        """Resolve the output size for a ``width x height`` source.

        A single given dimension derives the other from the source aspect
        ratio, rounding to the nearest pixel.
        """

        return _fill_dimensions(self.width, self.height, width, height)


def _fill_dimensions(
    target_width: Optional[int], target_height: Optional[int], width: int, height: int
) -> Tuple[int, int]:
    if target_width is None and target_height is None:
        return width, height
    if target_width is not None and target_height is not None:
        return target_width, target_height
    aspect = width / height
    if target_height is None:
        return target_width, max(1, round(target_width / aspect))
    return max(1, round(target_height * aspect)), target_height


@dataclasses.dataclass(frozen=True)
class ResizeValue:
    """A ``--resize`` argument: ``@1.5``, ``150%``, ``800x600``, ``800x_`` or ``_x600``."""

    multiplier: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @classmethod
    def parse(cls, text: str) -> "ResizeValue":
        value = text.strip()
        try:
            if value.startswith("@"):
                return cls(multiplier=float(value[1:]))
            if value.endswith("%"):
                return cls(multiplier=float(value[:-1]) / 100.0)
            if "x" in value:
                parts = value.split("x")
                if len(parts) > 2:
                    raise ValueError("There are more than 2 dimensions")
                width = None if parts[0] == "_" else int(parts[0])
                height = None if parts[1] == "_" else int(parts[1])
                return cls(width=width, height=height)
        except ValueError as exc:
            raise ValueError(f"Invalid resize value '{text}': {exc}") from exc
        raise ValueError(f"Invalid resize value '{text}'")

    def map_dimensions(self, width: int, height: int) -> Tuple[int, int]:
        if self.multiplier is not None:
            return int(width * self.multiplier), int(height * self.multiplier)
        return _fill_dimensions(self.width, self.height, width, height)

    def __str__(self) -> str:
        if self.multiplier is not None:
            return f"@{self.multiplier:g}"
        if self.width is None and self.height is None:
            return "base"
        width = "_" if self.width is None else str(self.width)
        height = "_" if self.height is None else str(self.height)
        return f"{width}x{height}"


# -- per-codec options -------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class JpegOptions:
    progressive: bool = True
    optimize_coding: bool = True
    subsampling: Optional[str] = None
    smoothing: int = 0
    colorspace: str = "ycbcr"
    chroma_quality: Optional[int] = None

    def __post_init__(self) -> None:
        if self.subsampling is not None and self.subsampling not in SUBSAMPLING_CHOICES:
            raise ValueError(f"Unknown chroma subsampling '{self.subsampling}'")
        if not 0 <= self.smoothing <= 100:
            raise ValueError("JPEG smoothing must be between 0 and 100")
        if self.colorspace not in JPEG_COLORSPACES:
            raise ValueError(f"Unknown JPEG colorspace '{self.colorspace}'")
        if self.chroma_quality is not None and not 1 <= self.chroma_quality <= 100:
            raise ValueError("JPEG chroma quality must be between 1 and 100")


@dataclasses.dataclass(frozen=True)
class PngOptions:
    compress_level: int = 6

    def __post_init__(self) -> None:
        if not 0 <= self.compress_level <= 9:
            raise ValueError("PNG compress level must be between 0 and 9")


@dataclasses.dataclass(frozen=True)
class OxiPngOptions:
    level: int = 2
    strip_metadata: bool = False
    interlace: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.level <= 6:
            raise ValueError("oxipng optimization level must be between 0 and 6")


@dataclasses.dataclass(frozen=True)
class WebPOptions:
    lossless: bool = False
    method: int = 4
    alpha_quality: int = 100
    exact: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.method <= 6:
            raise ValueError("WebP method must be between 0 and 6")
        if not 0 <= self.alpha_quality <= 100:
            raise ValueError("WebP alpha quality must be between 0 and 100")


@dataclasses.dataclass(frozen=True)
class AvifOptions:
    speed: int = 6
    subsampling: str = "4:2:0"
    alpha_mode: str = "unassociated-clean"

    def __post_init__(self) -> None:
        if self.alpha_mode not in AVIF_ALPHA_MODES:
            raise ValueError(f"Unknown AVIF alpha mode '{self.alpha_mode}'")
        if not 0 <= self.speed <= 10:
            raise ValueError("AVIF speed must be between 0 and 10")
        if self.subsampling not in SUBSAMPLING_CHOICES:
            raise ValueError(f"Unknown chroma subsampling '{self.subsampling}'")


@dataclasses.dataclass(frozen=True)
class JxlOptions:
    lossless: bool = False
    effort: int = 7

    def __post_init__(self) -> None:
        if not 1 <= self.effort <= 9:
            raise ValueError("JPEG-XL effort must be between 1 and 9")


SUBSAMPLING_CHOICES = ("4:4:4", "4:2:2", "4:2:0", "4:0:0")
JPEG_COLORSPACES = ("ycbcr", "rgb", "grayscale")
# unassociated-clean zeroes color under fully transparent pixels
AVIF_ALPHA_MODES = ("unassociated-clean", "unassociated-dirty", "premultiplied")

CodecOptions = Union[JpegOptions, PngOptions, OxiPngOptions, WebPOptions, AvifOptions, JxlOptions]

CODEC_OPTION_TYPES = {
    Codec.JPEG: JpegOptions,
    Codec.PNG: PngOptions,
    Codec.OXIPNG: OxiPngOptions,
    Codec.WEBP: WebPOptions,
    Codec.AVIF: AvifOptions,
    Codec.JPEG_XL: JxlOptions,
}

DEFAULT_QUALITY = 75.0


@dataclasses.dataclass(frozen=True)
class EncoderConfig:
    """Everything an encoder needs to know about the requested output.

    Use :meth:`build` rather than the constructor so quality and dimensions
    are validated together. Instances are immutable; the ``with_*`` methods
    return modified copies.
    """

    codec: Codec = Codec.JPEG
    quality: float = DEFAULT_QUALITY
    quantization: Optional[QuantizationConfig] = None
    resize: Optional[ResizeConfig] = None
    options: Optional[CodecOptions] = None

    def __post_init__(self) -> None:
        _check_quality(self.quality)
        if self.options is None:
            object.__setattr__(self, "options", CODEC_OPTION_TYPES[self.codec]())
        elif not isinstance(self.options, CODEC_OPTION_TYPES[self.codec]):
            raise TypeError(
                f"{type(self.options).__name__} cannot configure the {self.codec.value} encoder"
            )

    @classmethod
    def build(
        cls,
        quality: float,
        codec: Codec,
        width: Optional[int] = None,
        height: Optional[int] = None,
        resize_filter: Optional[FilterType] = None,
        options: Optional[CodecOptions] = None,
    ) -> "EncoderConfig":
        _check_quality(quality)
        resize = None
        if width is not None or height is not None or resize_filter is not None:
            resize = ResizeConfig(
                width=width,
                height=height,
                filter_type=resize_filter or FilterType.LANCZOS3,
            )
        return cls(codec=codec, quality=float(quality), resize=resize, options=options)

    def with_quantization(self, quantization: QuantizationConfig) -> "EncoderConfig":
        return dataclasses.replace(self, quantization=quantization)

    def with_resize(self, resize: ResizeConfig) -> "EncoderConfig":
        return dataclasses.replace(self, resize=resize)

    def with_options(self, options: CodecOptions) -> "EncoderConfig":
        return dataclasses.replace(self, options=options)


__all__ = [
    "AVIF_ALPHA_MODES",
    "AvifOptions",
    "CODEC_NAMES",
    "CODEC_OPTION_TYPES",
    "Codec",
    "CodecOptions",
    "DEFAULT_QUALITY",
    "EncoderConfig",
    "FilterType",
    "FitMode",
    "JPEG_COLORSPACES",
    "JpegOptions",
    "JxlOptions",
    "OxiPngOptions",
    "PngOptions",
    "QuantizationConfig",
    "ResizeConfig",
    "ResizeValue",
    "SUBSAMPLING_CHOICES",
    "WebPOptions",
]
