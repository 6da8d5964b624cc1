"""Image preprocessing: decode, RGB conversion, fixed-size resize, and [-1, 1] normalization.

The classifier consumes a float32 tensor of shape (1, H, W, 3) laid out as
[batch][y][x][channel] with channels in R, G, B order.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Literal

import numpy as np
from PIL import Image, UnidentifiedImageError

from leafscan.errors import DecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

ResampleName = Literal["nearest", "bilinear", "bicubic", "lanczos"]

DEFAULT_INPUT_SIZE: int = 160
CHANNELS: int = 3
PIXEL_SCALE: float = 127.5
PIXEL_OFFSET: float = 1.0

_RESAMPLE_FILTERS: dict[str, Image.Resampling] = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
    "bicubic": Image.Resampling.BICUBIC,
    "lanczos": Image.Resampling.LANCZOS,
}


def normalize(pixels: NDArray[np.uint8]) -> NDArray[np.float32]:
    """Map uint8 pixel values to float32 in [-1.0, 1.0] with ``b / 127.5 - 1.0``."""
    return pixels.astype(np.float32) / np.float32(PIXEL_SCALE) - np.float32(PIXEL_OFFSET)


class ImagePreprocessor:
    """Turns encoded image bytes into the classifier's input tensor."""

    def __init__(
        self,
        input_size: int = DEFAULT_INPUT_SIZE,
        resample: ResampleName = "nearest",
        max_image_pixels: int | None = None,
    ) -> None:
        if input_size < 1:
            raise ValueError(f"input_size must be positive, got {input_size}")
        try:
            self._resample = _RESAMPLE_FILTERS[resample]
        except KeyError:
            raise ValueError(f"Unknown resample filter: {resample}") from None
        self._input_size = input_size
        self._max_image_pixels = max_image_pixels

    @property
    def input_shape(self) -> tuple[int, int, int, int]:
        return (1, self._input_size, self._input_size, CHANNELS)

    def decode_image(self, image_bytes: bytes) -> Image.Image:
        """Decode raw image bytes into an RGB Pillow image.

        Raises:
            DecodeError: If the bytes are not a supported image, decode to no
                pixels, or exceed the configured pixel limit.
        """
        if not image_bytes:
            raise DecodeError("Image data is empty")

        try:
            image = Image.open(io.BytesIO(image_bytes))
            width, height = image.size
            if width == 0 or height == 0:
                raise DecodeError("Decoded image has no pixels")
            if self._max_image_pixels is not None and width * height > self._max_image_pixels:
                raise DecodeError(
                    f"Image is {width}x{height}, exceeding the limit of {self._max_image_pixels} pixels"
                )
            image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Unsupported image data: {exc}") from exc
        except (OSError, ValueError, SyntaxError) as exc:
            raise DecodeError(f"Failed to decode image: {exc}") from exc

        if image.mode != "RGB":
            image = image.convert("RGB")
        return image

    def to_tensor(self, image: Image.Image) -> NDArray[np.float32]:
        """Resize to the model resolution and normalize into a (1, H, W, 3) tensor."""
        size = (self._input_size, self._input_size)
        resized = image.resize(size, resample=self._resample) if image.size != size else image
        pixels = np.asarray(resized, dtype=np.uint8)
        return normalize(pixels)[np.newaxis, ...]

    def preprocess(self, image_bytes: bytes) -> NDArray[np.float32]:
        """Decode, resize, and normalize an encoded image.

        Raises:
            DecodeError: If the image cannot be decoded.
        """
        image = self.decode_image(image_bytes)
        logger.debug("Decoded %sx%s image", image.width, image.height)
        tensor = self.to_tensor(image)
        if tensor.shape != self.input_shape:
            raise DecodeError(f"Preprocessed tensor has shape {tensor.shape}, expected {self.input_shape}")
        return tensor
