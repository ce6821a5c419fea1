"""Tests for the codec dispatch table and its adapters."""

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
ImageCms = pytest.importorskip("PIL.ImageCms")

from raster_recoder import encoders, io_utils  # noqa: E402  # pylint: disable=wrong-import-position
from raster_recoder.config import (  # noqa: E402  # pylint: disable=wrong-import-position
    AvifOptions,
    Codec,
    EncoderConfig,
    JpegOptions,
    OxiPngOptions,
    WebPOptions,
)
from raster_recoder.encoders import (  # noqa: E402  # pylint: disable=wrong-import-position
    ENCODERS,
    encode,
    encode_to_file,
    jpeg_color_mode,
    scaled_qtable,
)
from raster_recoder.errors import (  # noqa: E402  # pylint: disable=wrong-import-position
    CodecUnavailable,
    DimensionOverflow,
    GenericEncodeError,
    UnsupportedColorspace,
)
from raster_recoder.image import ColorSpace, Image, Metadata  # noqa: E402  # pylint: disable=wrong-import-position


def _rgba(width: int = 10, height: int = 6, seed: int = 1) -> Image:
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    return Image.from_array(pixels, ColorSpace.RGBA)


def _open(data: bytes):
    handle = PILImage.open(io.BytesIO(data))
    handle.load()
    return handle


def _fail_if_called(*_args, **_kwargs):
    raise AssertionError("the encoding library must not be reached")


@documents("Colorspace is rejected before any library call")
def test_unsupported_colorspace_is_checked_first(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(encoders, "_save", _fail_if_called)
    gray_alpha = Image.from_array(np.zeros((4, 4, 2), dtype=np.uint8), ColorSpace.LUMA_A)

    with pytest.raises(UnsupportedColorspace) as excinfo:
        encode(gray_alpha, EncoderConfig.build(80, Codec.WEBP))

    assert excinfo.value.actual is ColorSpace.LUMA_A
    assert excinfo.value.supported == (ColorSpace.RGB, ColorSpace.RGBA)


def test_dimension_overflow_is_checked_before_encoding(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(encoders, "_save", _fail_if_called)
    wide = Image.from_array(np.zeros((1, 16384, 4), dtype=np.uint8), ColorSpace.RGBA)

    with pytest.raises(DimensionOverflow) as excinfo:
        encode(wide, EncoderConfig.build(80, Codec.WEBP))

    assert excinfo.value.limit == 16383
    assert excinfo.value.width == 16384


def test_jpeg_color_mode_reports_unknown():
    assert jpeg_color_mode(ColorSpace.RGB) == "RGB"
    assert jpeg_color_mode(ColorSpace.LUMA) == "L"
    assert jpeg_color_mode(ColorSpace.HSV) == "unknown"
    assert jpeg_color_mode(ColorSpace.BGRA) == "unknown"


@documents("Library failures surface as GenericEncodeError with a message")
def test_native_failure_becomes_generic_encode_error(monkeypatch: pytest.MonkeyPatch):
    def _boom(*_args, **_kwargs):
        raise RuntimeError("")

    monkeypatch.setattr(encoders, "_save", _boom)

    with pytest.raises(GenericEncodeError, match="Unknown error occurred during png encoding") as excinfo:
        encode(_rgba(), EncoderConfig.build(80, Codec.PNG))

    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_png_round_trip_is_lossless():
    image = _rgba()

    decoded = _open(encode(image, EncoderConfig.build(100, Codec.PNG)))

    assert decoded.format == "PNG"
    assert np.array_equal(np.asarray(decoded.convert("RGBA")), image.frame_array())


def test_png_embeds_icc_profile():
    image = _rgba()
    srgb = ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()
    image.metadata = Metadata(icc_profile=srgb)

    decoded = _open(encode(image, EncoderConfig.build(100, Codec.PNG)))

    assert decoded.info.get("icc_profile") == srgb


def test_png_writes_animation():
    frames = [np.full((3, 3, 4), value, dtype=np.uint8) for value in (0, 255)]
    image = Image.from_frames(frames, ColorSpace.RGBA, durations=[40, 60])

    decoded = _open(encode(image, EncoderConfig.build(100, Codec.PNG)))

    assert getattr(decoded, "n_frames", 1) == 2


def test_jpeg_drops_alpha_and_keeps_size():
    data = encode(_rgba(12, 8), EncoderConfig.build(70, Codec.JPEG))

    decoded = _open(data)
    assert decoded.format == "JPEG"
    assert decoded.mode == "RGB"
    assert decoded.size == (12, 8)


def test_jpeg_baseline_option():
    config = EncoderConfig.build(70, Codec.JPEG, options=JpegOptions(progressive=False, subsampling="4:4:4"))

    decoded = _open(encode(_rgba(), config))

    assert not decoded.info.get("progressive", False)


def test_jpeg_grayscale():
    gray = Image.from_array(np.full((5, 5), 128, dtype=np.uint8), ColorSpace.LUMA)

    decoded = _open(encode(gray, EncoderConfig.build(90, Codec.JPEG)))

    assert decoded.mode == "L"


class _SaveRecorder:
    def __init__(self):
        self.frames = None
        self.kwargs = None

    def __call__(self, frames, pil_format, **kwargs):
        self.frames = frames
        self.kwargs = kwargs
        return b"encoded"


class _AvifAvailable:
    avif = True


def test_jpeg_colorspace_option_grayscale():
    config = EncoderConfig.build(90, Codec.JPEG, options=JpegOptions(colorspace="grayscale"))

    decoded = _open(encode(_rgba(), config))

    assert decoded.mode == "L"


def test_jpeg_colorspace_option_rgb(monkeypatch: pytest.MonkeyPatch):
    config = EncoderConfig.build(90, Codec.JPEG, options=JpegOptions(colorspace="rgb"))
    assert _open(encode(_rgba(), config)).mode == "RGB"

    recorder = _SaveRecorder()
    monkeypatch.setattr(encoders, "_save", recorder)
    encode(_rgba(), config)

    assert recorder.kwargs["keep_rgb"] is True


def test_scaled_qtable_follows_libjpeg_scaling():
    base = encoders._ANNEX_K_LUMA  # pylint: disable=protected-access

    assert scaled_qtable(base, 50) == list(base)
    assert scaled_qtable(base, 100) == [1] * 64
    assert scaled_qtable(base, 1)[0] == 255
    assert scaled_qtable(base, 75)[0] == 8


def test_chroma_quality_writes_separate_tables(monkeypatch: pytest.MonkeyPatch):
    recorder = _SaveRecorder()
    monkeypatch.setattr(encoders, "_save", recorder)
    config = EncoderConfig.build(80, Codec.JPEG, options=JpegOptions(chroma_quality=20))

    encode(_rgba(), config)

    assert "quality" not in recorder.kwargs
    luma, chroma = recorder.kwargs["qtables"]
    assert luma == scaled_qtable(encoders._ANNEX_K_LUMA, 80)  # pylint: disable=protected-access
    assert chroma == scaled_qtable(encoders._ANNEX_K_CHROMA, 20)  # pylint: disable=protected-access


def test_lower_chroma_quality_shrinks_output():
    image = _rgba(64, 64, seed=7)

    coarse = encode(image, EncoderConfig.build(90, Codec.JPEG, options=JpegOptions(chroma_quality=10)))
    fine = encode(image, EncoderConfig.build(90, Codec.JPEG, options=JpegOptions(chroma_quality=95)))

    assert len(coarse) < len(fine)
    assert _open(coarse).size == (64, 64)


@pytest.mark.parametrize(
    ("options", "message"),
    [
        (lambda: JpegOptions(colorspace="cmyk"), "colorspace"),
        (lambda: JpegOptions(chroma_quality=0), "chroma quality"),
        (lambda: AvifOptions(alpha_mode="straight"), "alpha mode"),
    ],
)
def test_invalid_codec_options(options, message):
    with pytest.raises(ValueError, match=message):
        options()


def _with_transparent_corner() -> Image:
    pixels = np.full((4, 4, 4), (10, 20, 30, 255), dtype=np.uint8)
    pixels[0, 0] = (200, 100, 50, 0)
    return Image.from_array(pixels, ColorSpace.RGBA)


@documents("AVIF alpha modes control the color stored under transparent pixels")
@pytest.mark.parametrize(
    ("alpha_mode", "corner", "premultiplied"),
    [
        ("unassociated-clean", (0, 0, 0, 0), False),
        ("unassociated-dirty", (200, 100, 50, 0), False),
        ("premultiplied", (200, 100, 50, 0), True),
    ],
)
def test_avif_alpha_modes(monkeypatch: pytest.MonkeyPatch, alpha_mode, corner, premultiplied):
    recorder = _SaveRecorder()
    monkeypatch.setattr(encoders, "_save", recorder)
    monkeypatch.setattr(io_utils, "CodecCapabilities", _AvifAvailable)
    config = EncoderConfig.build(60, Codec.AVIF, options=AvifOptions(alpha_mode=alpha_mode))

    encode(_with_transparent_corner(), config)

    assert tuple(np.asarray(recorder.frames[0])[0, 0]) == corner
    assert recorder.kwargs.get("alpha_premultiplied", False) is premultiplied


def test_webp_lossless_round_trip():
    image = _rgba()
    config = EncoderConfig.build(100, Codec.WEBP, options=WebPOptions(lossless=True, exact=True))

    decoded = _open(encode(image, config))

    assert decoded.format == "WEBP"
    assert np.array_equal(np.asarray(decoded.convert("RGBA")), image.frame_array())


def test_oxipng_output_is_valid_png():
    pytest.importorskip("oxipng")
    image = _rgba(32, 32)

    data = encode(image, EncoderConfig.build(100, Codec.OXIPNG, options=OxiPngOptions(level=1)))

    decoded = _open(data)
    assert decoded.format == "PNG"
    assert np.array_equal(np.asarray(decoded.convert("RGBA")), image.frame_array())


def test_oxipng_missing_is_codec_unavailable(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(io_utils, "oxipng", None)

    with pytest.raises(CodecUnavailable, match="pyoxipng"):
        encode(_rgba(), EncoderConfig.build(100, Codec.OXIPNG))


def test_jxl_missing_is_codec_unavailable(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(io_utils, "pillow_jxl", None)

    with pytest.raises(CodecUnavailable, match="pillow-jxl-plugin"):
        encode(_rgba(), EncoderConfig.build(80, Codec.JPEG_XL))


def test_encode_to_file_writes_atomically(tmp_path: Path):
    destination = tmp_path / "nested" / "out.png"

    written = encode_to_file(_rgba(), EncoderConfig.build(100, Codec.PNG), destination)

    assert destination.stat().st_size == written
    assert [path.name for path in destination.parent.iterdir()] == ["out.png"]


def test_every_codec_has_an_encoder():
    assert set(ENCODERS) == set(Codec)
