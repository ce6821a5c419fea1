"""Uniform in-memory representation of decoded raster images.

Every decoder produces an :class:`Image` and every encoder consumes one,
so codecs never see each other's native layouts.

Key Components
--------------

BitType
    Numeric sample representation (8-bit, 16-bit integer or 32-bit float).

ColorSpace
    Meaning and count of the channels stored per pixel.

Channel
    One component's full-image buffer, stored as contiguous bytes.

Frame
    The channels making up one displayable state plus its duration.

Image
    Dimensions, colorspace, bit type, frames and side metadata. Validates
    its layout invariants on construction and whenever pixel data is
    replaced.
"""
from __future__ import annotations

import dataclasses
import enum
from typing import Iterable, List, Optional, Sequence

import numpy as np


class BitType(enum.Enum):
    U8 = "u8"
    U16 = "u16"
    F32 = "f32"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_BIT_TYPE_DTYPES[self])

    @property
    def bytes_per_sample(self) -> int:
        return self.dtype.itemsize

    @property
    def bits(self) -> int:
        return self.bytes_per_sample * 8

    @property
    def max_value(self) -> float:
        """Value representing full intensity (opaque alpha, white)."""

        if self is BitType.F32:
            return 1.0
        return float(np.iinfo(self.dtype).max)

    @classmethod
    def from_dtype(cls, dtype: np.dtype | type) -> "BitType":
        resolved = np.dtype(dtype)
        for member, name in _BIT_TYPE_DTYPES.items():
            if resolved == np.dtype(name):
                return member
        raise ValueError(f"No bit type matches dtype {resolved}")


_BIT_TYPE_DTYPES = {
    BitType.U8: "uint8",
    # native-endian by construction
    BitType.U16: "uint16",
    BitType.F32: "float32",
}


class ColorSpace(enum.Enum):
    RGB = "rgb"
    RGBA = "rgba"
    LUMA = "luma"
    LUMA_A = "luma_a"
    CMYK = "cmyk"
    YCBCR = "ycbcr"
    BGR = "bgr"
    BGRA = "bgra"
    ARGB = "argb"
    HSV = "hsv"

    @property
    def channel_count(self) -> int:
        return _CHANNEL_COUNTS[self]

    @property
    def alpha_index(self) -> Optional[int]:
        """Index of the alpha channel, or ``None`` when there is none."""

        return _ALPHA_INDEX.get(self)

    @property
    def has_alpha(self) -> bool:
        return self.alpha_index is not None


_CHANNEL_COUNTS = {
    ColorSpace.RGB: 3,
    ColorSpace.RGBA: 4,
    ColorSpace.LUMA: 1,
    ColorSpace.LUMA_A: 2,
    ColorSpace.CMYK: 4,
    ColorSpace.YCBCR: 3,
    ColorSpace.BGR: 3,
    ColorSpace.BGRA: 4,
    ColorSpace.ARGB: 4,
    ColorSpace.HSV: 3,
}

_ALPHA_INDEX = {
    ColorSpace.RGBA: 3,
    ColorSpace.LUMA_A: 1,
    ColorSpace.BGRA: 3,
    ColorSpace.ARGB: 0,
}


@dataclasses.dataclass
class Channel:
    """A contiguous sample buffer tagged with how to reinterpret its bytes."""

    data: bytearray
    bit_type: BitType

    def as_array(self, width: int, height: int) -> np.ndarray:
        """Return a writable ``height x width`` view over the buffer."""

        return np.frombuffer(self.data, dtype=self.bit_type.dtype).reshape((height, width))

    @classmethod
    def from_array(cls, array: np.ndarray, bit_type: BitType) -> "Channel":
        packed = np.ascontiguousarray(array, dtype=bit_type.dtype)
        return cls(bytearray(packed.tobytes()), bit_type)

    def __len__(self) -> int:
        return len(self.data)


@dataclasses.dataclass
class Frame:
    channels: List[Channel]
    duration: int = 0


@dataclasses.dataclass
class Metadata:
    """Side information carried alongside the pixels.

    Attributes:
        orientation: EXIF orientation (1-8). Decoders bake the rotation into
            the pixel data and reset this to 1.
        icc_profile: Raw ICC profile bytes, if the source embedded one.
        exif: Raw EXIF block, if present.
    """

    orientation: int = 1
    icc_profile: Optional[bytes] = None
    exif: Optional[bytes] = None


@dataclasses.dataclass
class Image:
    width: int
    height: int
    colorspace: ColorSpace
    bit_type: BitType
    frames: List[Frame]
    metadata: Metadata = dataclasses.field(default_factory=Metadata)

    def __post_init__(self) -> None:
        self.validate()

    # -- construction ---------------------------------------------------------

    @classmethod
    def from_array(
        cls,
        array: np.ndarray,
        colorspace: ColorSpace,
        *,
        bit_type: Optional[BitType] = None,
        metadata: Optional[Metadata] = None,
        duration: int = 0,
    ) -> "Image":
        """Build a single-frame image from an ``H x W`` or ``H x W x C`` array."""

        durations = [duration]
        return cls.from_frames([array], colorspace, durations=durations, bit_type=bit_type, metadata=metadata)

    @classmethod
    def from_frames(
        cls,
        arrays: Sequence[np.ndarray],
        colorspace: ColorSpace,
        *,
        durations: Optional[Sequence[int]] = None,
        bit_type: Optional[BitType] = None,
        metadata: Optional[Metadata] = None,
    ) -> "Image":
        if not arrays:
            raise ValueError("An image needs at least one frame")
        first = _as_hwc(arrays[0])
        resolved_type = bit_type or BitType.from_dtype(first.dtype)
        height, width = first.shape[:2]
        frames = [
            _frame_from_array(_as_hwc(array), resolved_type, duration)
            for array, duration in zip(arrays, _durations(durations, len(arrays)))
        ]
        return cls(
            width=width,
            height=height,
            colorspace=colorspace,
            bit_type=resolved_type,
            frames=frames,
            metadata=metadata or Metadata(),
        )

    # -- invariants -----------------------------------------------------------

    def validate(self) -> None:
        """Raise ``ValueError`` when the channel layout is inconsistent."""

        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Image dimensions must be positive, got {self.width}x{self.height}")
        if not self.frames:
            raise ValueError("An image needs at least one frame")
        expected_len = self.width * self.height * self.bit_type.bytes_per_sample
        expected_channels = self.colorspace.channel_count
        for frame_index, frame in enumerate(self.frames):
            if len(frame.channels) != expected_channels:
                raise ValueError(
                    f"Frame {frame_index} has {len(frame.channels)} channel(s); "
                    f"{self.colorspace.name} requires {expected_channels}"
                )
            for channel in frame.channels:
                if channel.bit_type is not self.bit_type:
                    raise ValueError(
                        f"Frame {frame_index} mixes {channel.bit_type.name} into a {self.bit_type.name} image"
                    )
                if len(channel) != expected_len:
                    raise ValueError(
                        f"Frame {frame_index} channel holds {len(channel)} bytes; expected {expected_len}"
                    )

    # -- accessors ------------------------------------------------------------

    @property
    def depth(self) -> int:
        return self.bit_type.bits

    @property
    def is_animated(self) -> bool:
        return len(self.frames) > 1

    @property
    def durations(self) -> List[int]:
        return [frame.duration for frame in self.frames]

    def channel_arrays(self, index: int = 0) -> List[np.ndarray]:
        """Writable per-channel views of frame *index*."""

        return [channel.as_array(self.width, self.height) for channel in self.frames[index].channels]

    def frame_array(self, index: int = 0) -> np.ndarray:
        """Return frame *index* as an interleaved ``H x W x C`` copy."""

        return np.stack(self.channel_arrays(index), axis=2)

    def frame_arrays(self) -> List[np.ndarray]:
        return [self.frame_array(index) for index in range(len(self.frames))]

    def set_frame_arrays(self, arrays: Sequence[np.ndarray], *, bit_type: Optional[BitType] = None) -> None:
        """Replace every frame's pixels, adopting the arrays' dimensions.

        Durations are preserved. The new layout is validated before the
        image is touched so a rejected update leaves it unchanged.
        """

        if len(arrays) != len(self.frames):
            raise ValueError(f"Expected {len(self.frames)} frame(s), got {len(arrays)}")
        target_type = bit_type or self.bit_type
        shaped = [_as_hwc(array) for array in arrays]
        height, width = shaped[0].shape[:2]
        frames = [
            _frame_from_array(array, target_type, frame.duration) for array, frame in zip(shaped, self.frames)
        ]
        candidate = Image(width, height, self.colorspace, target_type, frames, self.metadata)
        self.width, self.height, self.bit_type, self.frames = (
            candidate.width,
            candidate.height,
            candidate.bit_type,
            candidate.frames,
        )

    def flatten_to_u8(self, index: int = 0) -> np.ndarray:
        """Interleaved 8-bit copy of frame *index*, scaling deeper samples down."""

        return to_u8(self.frame_array(index), self.bit_type)

    def copy(self) -> "Image":
        frames = [
            Frame([Channel(bytearray(channel.data), channel.bit_type) for channel in frame.channels], frame.duration)
            for frame in self.frames
        ]
        return Image(
            self.width,
            self.height,
            self.colorspace,
            self.bit_type,
            frames,
            dataclasses.replace(self.metadata),
        )


def to_u8(array: np.ndarray, bit_type: BitType) -> np.ndarray:
    if bit_type is BitType.U8:
        return np.ascontiguousarray(array, dtype=np.uint8)
    if bit_type is BitType.U16:
        return ((array.astype(np.uint32) + 128) // 257).astype(np.uint8)
    clipped = np.clip(np.nan_to_num(array, nan=0.0), 0.0, 1.0)
    return np.rint(clipped * 255.0).astype(np.uint8)


def _as_hwc(array: np.ndarray) -> np.ndarray:
    array = np.asarray(array)
    if array.ndim == 2:
        return array[:, :, None]
    if array.ndim != 3:
        raise ValueError(f"Expected a 2D or 3D pixel array, got shape {array.shape}")
    return array


def _frame_from_array(array: np.ndarray, bit_type: BitType, duration: int) -> Frame:
    channels = [Channel.from_array(array[:, :, index], bit_type) for index in range(array.shape[2])]
    return Frame(channels, int(duration))


def _durations(durations: Optional[Iterable[int]], count: int) -> List[int]:
    if durations is None:
        return [0] * count
    resolved = list(durations)
    if len(resolved) != count:
        raise ValueError(f"Expected {count} duration(s), got {len(resolved)}")
    return resolved


__all__ = [
    "BitType",
    "Channel",
    "ColorSpace",
    "Frame",
    "Image",
    "Metadata",
    "to_u8",
]
