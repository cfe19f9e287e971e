"""Image preprocessing: decoding, size validation and tensor conversion.

Images are decoded with Pillow, EXIF-rotated, converted to RGB, resampled
bilinearly to the model input size and laid out as an NCHW float32 tensor
with values in [0, 1].
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

ImageSource = str | Path | bytes | Image.Image | np.ndarray

DEFAULT_INPUT_SHAPE: tuple[int, int, int, int] = (1, 3, 224, 224)


def input_shape(size: int) -> tuple[int, int, int, int]:
    """Fixed (batch, channels, height, width) input geometry for a square model."""
    return (1, 3, size, size)


def _check_pixels(image: Image.Image, max_pixels: int | None) -> None:
    pixels = image.width * image.height
    if max_pixels is not None and pixels > max_pixels:
        raise ValueError(f"Image has {pixels} pixels, limit is {max_pixels}")


def _open_encoded(fp: str | Path | io.BytesIO, max_pixels: int | None, name: str) -> Image.Image:
    # Dimensions come from the header; reject before decoding pixel data.
    try:
        image = Image.open(fp)
        _check_pixels(image, max_pixels)
        image.load()
    except Image.DecompressionBombError as exc:
        raise ValueError(f"Image {name} is too large: {exc}") from exc
    except FileNotFoundError:
        raise
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"Could not decode image {name}: {exc}") from exc
    return image


def load_image(source: ImageSource, max_pixels: int | None = None) -> Image.Image:
    """Load an image from a path, raw bytes, PIL image or HxWx3 uint8 array.

    Raises:
        ValueError: If the image cannot be decoded or exceeds ``max_pixels``.
    """
    if isinstance(source, Image.Image):
        image = source
    elif isinstance(source, np.ndarray):
        if source.ndim != 3 or source.shape[2] != 3:
            raise ValueError(f"Expected HxWx3 array, got shape {source.shape}")
        if source.dtype != np.uint8:
            source = (np.clip(source, 0.0, 1.0) * 255).astype(np.uint8)
        image = Image.fromarray(source)
    elif isinstance(source, bytes):
        image = _open_encoded(io.BytesIO(source), max_pixels, "<upload>")
    elif isinstance(source, (str, Path)):
        image = _open_encoded(source, max_pixels, str(source))
    else:
        raise ValueError(f"Unsupported image type: {type(source)}")

    _check_pixels(image, max_pixels)
    image = ImageOps.exif_transpose(image)
    return image.convert("RGB")


def image_to_tensor(
    image: Image.Image,
    shape: tuple[int, int, int, int] = DEFAULT_INPUT_SHAPE,
    out: NDArray[np.float32] | None = None,
) -> NDArray[np.float32]:
    """Resample ``image`` into an NCHW float32 tensor of ``shape``.

    If ``out`` is given the pixels are written into it and it is returned.

    Raises:
        ValueError: If ``shape`` is not (1, 3, H, W) or ``out`` does not match it.
    """
    batch, channels, height, width = shape
    if batch != 1 or channels != 3:
        raise ValueError(f"Unsupported input shape {shape}; expected (1, 3, H, W)")
    if out is not None and out.shape != shape:
        raise ValueError(f"Output buffer shape {out.shape} does not match {shape}")

    resized = image.convert("RGB").resize((width, height), Image.Resampling.BILINEAR)
    pixels = np.asarray(resized, dtype=np.float32) / 255.0
    chw = pixels.transpose(2, 0, 1)

    if out is None:
        return np.ascontiguousarray(chw[np.newaxis, ...])
    out[0] = chw
    return out
