from raster_recoder.io_utils import CodecCapabilities
import pytest

pytest.importorskip("PIL")


class _StubFeatures:
    def __init__(self, *, avif=True, raises=False):
        self._avif = avif
        self._raises = raises

    def check(self, name):
        if self._raises:
            raise ValueError(f"Unknown feature {name}")
        return self._avif if name == "avif" else False


class _StubOxipng:
    def __init__(self, *, provide_optimizer=True):
        if provide_optimizer:
            self.optimize_from_memory = object()


class _StubTiffFile:
    def __init__(self, *, provide_reader=True):
        if provide_reader:
            self.imread = object()


def test_capabilities_without_optional_dependencies():
    capabilities = CodecCapabilities(
        tifffile_module=None,
        oxipng_module=None,
        jxl_module=None,
        pillow_features=_StubFeatures(avif=False),
    )

    assert capabilities.as_dict() == {
        "avif": False,
        "jpeg_xl": False,
        "oxipng": False,
        "tiff_16bit": False,
    }
    assert capabilities.describe() == "avif=no, jpeg_xl=no, oxipng=no, tiff_16bit=no"


def test_capabilities_with_every_backend():
    capabilities = CodecCapabilities(
        tifffile_module=_StubTiffFile(),
        oxipng_module=_StubOxipng(),
        jxl_module=object(),
        pillow_features=_StubFeatures(),
    )

    assert capabilities.avif is True
    assert capabilities.jpeg_xl is True
    assert capabilities.oxipng is True
    assert capabilities.tiff_16bit is True


def test_capabilities_detect_incomplete_modules():
    capabilities = CodecCapabilities(
        tifffile_module=_StubTiffFile(provide_reader=False),
        oxipng_module=_StubOxipng(provide_optimizer=False),
    )

    assert capabilities.tiff_16bit is False
    assert capabilities.oxipng is False


def test_capabilities_treat_feature_errors_as_missing():
    capabilities = CodecCapabilities(pillow_features=_StubFeatures(raises=True))

    assert capabilities.avif is False


def test_capabilities_without_feature_check():
    capabilities = CodecCapabilities(pillow_features=object())

    assert capabilities.avif is False
