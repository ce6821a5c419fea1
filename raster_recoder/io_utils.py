"""I/O primitives and codec capability detection.

Key Components
--------------

CodecCapabilities
    Detects which optional codec backends are installed (AVIF in Pillow,
    the JPEG-XL plugin, oxipng, tifffile) so dispatchers can fail with a
    precise message instead of a library traceback.

ProcessingContext
    Context manager for atomic file operations with staged writes.

Functions
---------

write_bytes_atomic
    Write an encoded buffer through :class:`ProcessingContext`.

backup_source
    Rename an input to ``<name>.backup`` once its output is staged.
"""
from __future__ import annotations

import contextlib
import dataclasses
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from PIL import features as pil_features

try:  # Optional high-fidelity TIFF reader
    import tifffile  # type: ignore
except (ImportError, ModuleNotFoundError):  # pragma: no cover - optional dependency
    tifffile = None

try:  # Optional codec pack used by tifffile for certain compressions
    import imagecodecs  # type: ignore  # pylint: disable=import-error
except (ImportError, ModuleNotFoundError):  # pragma: no cover - optional dependency
    imagecodecs = None

try:  # Optional lossless PNG recompressor (pyoxipng)
    import oxipng  # type: ignore  # pylint: disable=import-error
except (ImportError, ModuleNotFoundError):  # pragma: no cover - optional dependency
    oxipng = None

try:  # libimagequant binding used for palette quantization
    import imagequant  # type: ignore  # pylint: disable=import-error
except (ImportError, ModuleNotFoundError):  # pragma: no cover - optional dependency
    imagequant = None

try:  # Registers the JPEG-XL plugin with Pillow on import
    import pillow_jxl  # type: ignore  # pylint: disable=import-error,unused-import
except (ImportError, ModuleNotFoundError):  # pragma: no cover - optional dependency
    pillow_jxl = None

from .errors import EncodingIOError

LOGGER = logging.getLogger("raster_recoder")


class CodecCapabilities:
    """Detects available codec backends based on installed dependencies.

    Attributes:
        avif: Pillow was built with AVIF read/write support.
        jpeg_xl: The ``pillow-jxl-plugin`` package is importable.
        oxipng: The ``pyoxipng`` package is importable.
        tiff_16bit: ``tifffile`` is available for full-depth TIFF decoding.
    """

    _SENTINEL = object()

    def __init__(
        self,
        *,
        tifffile_module: Any | None | object = _SENTINEL,
        oxipng_module: Any | None | object = _SENTINEL,
        jxl_module: Any | None | object = _SENTINEL,
        pillow_features: Any | None | object = _SENTINEL,
    ) -> None:
        """Initialize capability detection.

        Each keyword replaces the corresponding global import, which lets
        tests simulate missing or stubbed backends.
        """
        self._tifffile = tifffile if tifffile_module is self._SENTINEL else tifffile_module
        self._oxipng = oxipng if oxipng_module is self._SENTINEL else oxipng_module
        self._jxl = pillow_jxl if jxl_module is self._SENTINEL else jxl_module
        self._features = pil_features if pillow_features is self._SENTINEL else pillow_features

        self.avif = self._detect_avif()
        self.jpeg_xl = self._jxl is not None
        self.oxipng = bool(getattr(self._oxipng, "optimize_from_memory", None))
        self.tiff_16bit = bool(getattr(self._tifffile, "imread", None))

    def _detect_avif(self) -> bool:
        check = getattr(self._features, "check", None)
        if check is None:
            return False
        try:
            return bool(check("avif"))
        except (ValueError, TypeError):  # pragma: no cover - older Pillow releases
            return False

    def as_dict(self) -> Dict[str, bool]:
        return {
            "avif": self.avif,
            "jpeg_xl": self.jpeg_xl,
            "oxipng": self.oxipng,
            "tiff_16bit": self.tiff_16bit,
        }

    def describe(self) -> str:
        return ", ".join(f"{name}={'yes' if enabled else 'no'}" for name, enabled in self.as_dict().items())


@dataclasses.dataclass
class ProcessingContext:
    """Context manager for atomic file writes using staged temporary files.

    Writes to a temporary file in the same directory as the destination, then
    atomically moves it to the final location on success. Cleans up temporary
    files on failure.

    Attributes:
        destination: Final output file path.
        suffix: Temporary file suffix (default: ".tmp").
    """

    destination: Path
    suffix: str = ".tmp"

    def __post_init__(self) -> None:
        self._staged_path: Optional[Path] = None

    def _temp_path(self) -> Path:
        unique = uuid.uuid4().hex
        name = f".{self.destination.name}{self.suffix}-{unique}"
        return self.destination.parent / name

    def __enter__(self) -> Path:
        self.destination.parent.mkdir(parents=True, exist_ok=True)
        self._staged_path = self._temp_path()
        return self._staged_path

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._staged_path is None:
            return False

        staged = self._staged_path
        self._staged_path = None

        if exc_type is None:
            try:
                os.replace(staged, self.destination)
            except Exception:
                with contextlib.suppress(Exception):
                    staged.unlink()
                raise
        else:
            with contextlib.suppress(FileNotFoundError):
                staged.unlink()
        return False


def write_bytes_atomic(destination: Path, data: bytes, *, backup_of: Optional[Path] = None) -> None:
    """Write *data* to *destination* without ever exposing a partial file.

    When *backup_of* is given it is renamed to ``<name>.backup`` only after
    the new bytes are staged, and restored if the final move fails, so a
    failed write never leaves the source missing.

    Raises:
        EncodingIOError: If the staged file cannot be written or moved.
    """
    backed_up: Optional[Path] = None
    try:
        with ProcessingContext(destination) as staged_path:
            staged_path.write_bytes(data)
            if backup_of is not None:
                backed_up = backup_source(backup_of)
    except OSError as exc:
        if backed_up is not None and backup_of is not None and not backup_of.exists():
            os.replace(backed_up, backup_of)
        raise EncodingIOError(f"Unable to write {destination}: {exc}") from exc


def backup_path(source: Path) -> Path:
    return source.with_name(source.name + ".backup")


def backup_source(source: Path) -> Path:
    """Rename *source* to ``<name>.backup`` and return the new path."""

    target = backup_path(source)
    LOGGER.debug("Backing up %s -> %s", source, target)
    os.replace(source, target)
    return target


__all__ = [
    "CodecCapabilities",
    "ProcessingContext",
    "backup_path",
    "backup_source",
    "write_bytes_atomic",
]
