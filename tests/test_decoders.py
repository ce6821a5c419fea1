"""Tests for decode dispatch and pixel normalization."""

from __future__ import annotations

import io
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

np = pytest.importorskip("numpy")
PILImage = pytest.importorskip("PIL.Image")

from raster_recoder import io_utils  # noqa: E402  # pylint: disable=wrong-import-position
from raster_recoder.decoders import (  # noqa: E402  # pylint: disable=wrong-import-position
    apply_orientation,
    decode,
    decode_bytes,
    decode_file,
    expand_to_rgba,
)
from raster_recoder.errors import (  # noqa: E402  # pylint: disable=wrong-import-position
    CodecUnavailable,
    DecodingError,
    DecodingIOError,
    NativeDecodeError,
    ParsingError,
    UnsupportedFormat,
)
from raster_recoder.image import BitType, ColorSpace  # noqa: E402  # pylint: disable=wrong-import-position


def _encode(image, fmt: str, **params) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **params)
    return buffer.getvalue()


def _noise(width: int, height: int, channels: int = 3, seed: int = 0) -> "np.ndarray":
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, channels), dtype=np.uint8)


@documents("Decoded images always come back as RGBA")
def test_png_round_trip_dimensions(tmp_path: Path):
    source = tmp_path / "plain.png"
    PILImage.fromarray(_noise(12, 7)).save(source)

    image = decode_file(source)

    assert (image.width, image.height) == (12, 7)
    assert image.colorspace is ColorSpace.RGBA
    assert image.bit_type is BitType.U8
    assert len(image.frames) == 1
    assert np.all(image.frame_array()[:, :, 3] == 255)


def test_png_pixels_are_preserved():
    pixels = _noise(5, 4, channels=4, seed=3)
    image = decode_bytes(_encode(PILImage.fromarray(pixels), "PNG"))

    assert np.array_equal(image.frame_array(), pixels)


def test_jpeg_round_trip_dimensions(tmp_path: Path):
    source = tmp_path / "photo.JPG"
    PILImage.fromarray(_noise(16, 9)).save(source, format="JPEG", quality=90)

    image = decode(source)

    assert (image.width, image.height) == (16, 9)
    assert image.colorspace is ColorSpace.RGBA


def test_grayscale_is_expanded_to_rgba():
    gray = np.arange(12, dtype=np.uint8).reshape(3, 4) * 20
    image = decode_bytes(_encode(PILImage.fromarray(gray), "PNG"))

    rgba = image.frame_array()
    for channel in range(3):
        assert np.array_equal(rgba[:, :, channel], gray)
    assert np.all(rgba[:, :, 3] == 255)


def test_gray_alpha_keeps_alpha():
    gray = np.full((2, 3), 77, dtype=np.uint8)
    alpha = np.array([[0, 128, 255], [10, 20, 30]], dtype=np.uint8)
    la = PILImage.merge("LA", [PILImage.fromarray(gray), PILImage.fromarray(alpha)])

    rgba = decode_bytes(_encode(la, "PNG")).frame_array()

    assert np.array_equal(rgba[:, :, 0], gray)
    assert np.array_equal(rgba[:, :, 3], alpha)


def test_palette_png_is_expanded():
    palette_image = PILImage.new("P", (4, 2))
    palette_image.putpalette([255, 0, 0, 0, 0, 255] + [0] * (256 * 3 - 6))
    palette_image.putpixel((3, 1), 1)

    rgba = decode_bytes(_encode(palette_image, "PNG")).frame_array()

    assert tuple(rgba[0, 0]) == (255, 0, 0, 255)
    assert tuple(rgba[1, 3]) == (0, 0, 255, 255)


def test_sixteen_bit_png_keeps_depth():
    gray = (np.arange(6, dtype=np.uint16).reshape(2, 3) * 10000).astype(np.uint16)
    data = _encode(PILImage.fromarray(gray), "PNG")

    image = decode_bytes(data)

    assert image.bit_type is BitType.U16
    assert image.depth == 16
    rgba = image.frame_array()
    assert np.array_equal(rgba[:, :, 1], gray)
    assert np.all(rgba[:, :, 3] == 65535)


def test_sixteen_bit_tiff(tmp_path: Path):
    tifffile = pytest.importorskip("tifffile")
    pixels = np.random.default_rng(5).integers(0, 65536, size=(6, 8, 3), dtype=np.uint16)
    source = tmp_path / "deep.tiff"
    tifffile.imwrite(source, pixels, photometric="rgb")

    image = decode_file(source)

    assert image.bit_type is BitType.U16
    assert (image.width, image.height) == (8, 6)
    rgba = image.frame_array()
    assert np.array_equal(rgba[:, :, :3], pixels)
    assert np.all(rgba[:, :, 3] == 65535)


def test_tiff_falls_back_to_pillow(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    source = tmp_path / "flat.tif"
    PILImage.fromarray(_noise(5, 3)).save(source, format="TIFF")
    monkeypatch.setattr(io_utils, "tifffile", None)

    image = decode_file(source)

    assert image.bit_type is BitType.U8
    assert (image.width, image.height) == (5, 3)


def test_lzw_tiff_without_imagecodecs_uses_pillow(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    pytest.importorskip("tifffile")
    pixels = _noise(4, 4, seed=9)
    source = tmp_path / "packed.tif"
    PILImage.fromarray(pixels).save(source, format="TIFF", compression="tiff_lzw")
    monkeypatch.setattr(io_utils, "imagecodecs", None)

    image = decode_file(source)

    assert image.bit_type is BitType.U8
    assert np.array_equal(image.frame_array()[:, :, :3], pixels)


def test_animated_png_keeps_frames_and_durations():
    frames = [PILImage.fromarray(_noise(4, 4, channels=4, seed=seed)) for seed in range(2)]
    buffer = io.BytesIO()
    frames[0].save(buffer, format="PNG", save_all=True, append_images=frames[1:], duration=[100, 200], loop=0)

    image = decode_bytes(buffer.getvalue())

    assert image.is_animated
    assert len(image.frames) == 2
    assert image.durations == [100, 200]


def _mpo_bytes() -> bytes:
    primary = PILImage.fromarray(_noise(64, 48, seed=3))
    preview = PILImage.fromarray(_noise(16, 12, seed=4))
    buffer = io.BytesIO()
    primary.save(buffer, format="MPO", save_all=True, append_images=[preview])
    return buffer.getvalue()


@documents("Multi-picture JPEGs decode as their primary picture")
def test_multi_picture_jpeg_decodes_first_picture():
    image = decode_bytes(_mpo_bytes(), "jpg")

    assert (image.width, image.height) == (64, 48)
    assert len(image.frames) == 1
    assert not image.is_animated


def test_frames_of_different_sizes_are_parsing_errors(monkeypatch: pytest.MonkeyPatch):
    from raster_recoder import decoders  # pylint: disable=import-outside-toplevel

    monkeypatch.setattr(decoders, "_is_animation", lambda handle, image_format: True)

    with pytest.raises(ParsingError):
        decode_bytes(_mpo_bytes(), "jpg")


@documents("EXIF orientation is baked into pixels and reset to 1")
def test_jpeg_orientation_six_swaps_dimensions():
    exif = PILImage.Exif()
    exif[0x0112] = 6
    data = _encode(PILImage.fromarray(_noise(20, 10)), "JPEG", exif=exif.tobytes())

    image = decode_bytes(data)

    assert (image.width, image.height) == (10, 20)
    assert image.metadata.orientation == 1
    assert image.metadata.exif is not None


def test_exif_orientation_rewritten_to_one():
    exif = PILImage.Exif()
    exif[0x0112] = 3
    data = _encode(PILImage.fromarray(_noise(6, 6)), "JPEG", exif=exif.tobytes())

    image = decode_bytes(data)

    rewritten = PILImage.Exif()
    rewritten.load(image.metadata.exif)
    assert rewritten[0x0112] == 1


@pytest.mark.parametrize(
    ("orientation", "method"),
    [
        (2, "FLIP_LEFT_RIGHT"),
        (3, "ROTATE_180"),
        (4, "FLIP_TOP_BOTTOM"),
        (5, "TRANSPOSE"),
        (6, "ROTATE_270"),
        (7, "TRANSVERSE"),
        (8, "ROTATE_90"),
    ],
)
def test_apply_orientation_matches_pillow_transpose(orientation, method):
    pixels = np.arange(12, dtype=np.uint8).reshape(3, 4)
    expected = np.asarray(PILImage.fromarray(pixels).transpose(getattr(PILImage.Transpose, method)))

    assert np.array_equal(apply_orientation(pixels, orientation), expected)


def test_apply_orientation_ignores_unknown_values():
    pixels = np.arange(6, dtype=np.uint8).reshape(2, 3)

    assert apply_orientation(pixels, 1) is pixels
    assert apply_orientation(pixels, 9) is pixels


def test_expand_to_rgba_rejects_odd_channel_counts():
    with pytest.raises(ParsingError):
        expand_to_rgba(np.zeros((2, 2, 5), dtype=np.uint8), BitType.U8)


def test_truncated_file_is_native_decode_error(tmp_path: Path):
    data = _encode(PILImage.fromarray(_noise(64, 64, seed=9)), "PNG")
    source = tmp_path / "broken.png"
    source.write_bytes(data[: len(data) // 2])

    with pytest.raises(NativeDecodeError, match="broken.png"):
        decode_file(source)


def test_garbage_with_known_extension(tmp_path: Path):
    source = tmp_path / "noise.webp"
    source.write_bytes(b"definitely not an image")

    with pytest.raises(DecodingError):
        decode_file(source)


@documents("Unknown extensions fail before the file is read")
def test_unknown_extension(tmp_path: Path):
    with pytest.raises(UnsupportedFormat) as excinfo:
        decode_file(tmp_path / "does-not-exist.bmp")

    assert excinfo.value.extension == "bmp"


def test_missing_file_is_io_error(tmp_path: Path):
    with pytest.raises(DecodingIOError):
        decode_file(tmp_path / "absent.png")


def test_unknown_bytes_cannot_be_sniffed():
    with pytest.raises(UnsupportedFormat):
        decode_bytes(b"\x00" * 64)


def test_explicit_format_overrides_sniffing():
    data = _encode(PILImage.fromarray(_noise(3, 3)), "PNG")

    with pytest.raises(NativeDecodeError):
        decode_bytes(data, "jpeg")


def test_jxl_requires_plugin(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(io_utils, "pillow_jxl", None)

    with pytest.raises(CodecUnavailable, match="pillow-jxl-plugin"):
        decode_bytes(b"\xff\x0a" + b"\x00" * 16)
