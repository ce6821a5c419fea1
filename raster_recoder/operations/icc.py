"""Color-profile conversion through Pillow's ``ImageCms``."""
from __future__ import annotations

import dataclasses
import io
import logging
from typing import ClassVar, Optional, Tuple

import numpy as np
from PIL import Image as PILImage
from PIL import ImageCms

from ..errors import OperationFailed, native_boundary
from ..image import BitType, ColorSpace, Image

LOGGER = logging.getLogger("raster_recoder")

_PIL_MODES = {ColorSpace.RGB: "RGB", ColorSpace.RGBA: "RGBA"}


@dataclasses.dataclass(frozen=True)
class ApplyIcc:
    """Convert pixels from the embedded profile to *target_profile*.

    ``target_profile`` holds raw ICC bytes; ``None`` selects built-in sRGB.
    Images without an embedded profile are assumed to be sRGB already.
    """

    target_profile: Optional[bytes] = None

    name: ClassVar[str] = "apply-icc"
    supported_types: ClassVar[Tuple[BitType, ...]] = (BitType.U8,)
    supported_colorspaces: ClassVar[Tuple[ColorSpace, ...]] = (ColorSpace.RGB, ColorSpace.RGBA)


def _load_profile(raw: Optional[bytes]) -> ImageCms.ImageCmsProfile:
    if raw is None:
        return ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB"))
    return ImageCms.ImageCmsProfile(io.BytesIO(raw))


def apply_icc(operation: ApplyIcc, image: Image) -> None:
    source_raw = image.metadata.icc_profile
    if source_raw is None and operation.target_profile is None:
        LOGGER.warning("No ICC profile embedded; image is already treated as sRGB, skipping conversion")
        return

    mode = _PIL_MODES[image.colorspace]
    with native_boundary(OperationFailed, "ICC transform"):
        source = _load_profile(source_raw)
        target = _load_profile(operation.target_profile)
        transform = ImageCms.buildTransform(source, target, mode, mode)
        converted = [
            np.asarray(ImageCms.applyTransform(PILImage.fromarray(frame), transform))
            for frame in image.frame_arrays()
        ]
        target_bytes = target.tobytes()
    image.set_frame_arrays(converted)
    image.metadata.icc_profile = target_bytes
