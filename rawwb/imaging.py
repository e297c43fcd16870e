"""Decode uploads into linear float buffers and encode results for display."""
import base64
import io
import logging
from typing import Optional

import cv2
import numpy as np
from PIL import Image, ImageOps

from .color_science import linear_to_srgb, srgb_to_linear, validate_image

logger = logging.getLogger(__name__)

# Magic bytes of the accepted upload formats
ALLOWED_MAGIC_BYTES = {
    b'\xff\xd8\xff': 'jpeg',
    b'\x89PNG\r\n\x1a\n': 'png',
    b'II*\x00': 'tiff',
    b'MM\x00*': 'tiff',
    b'RIFF': 'webp',
}


def detect_format(content: bytes) -> Optional[str]:
    """Identify the image format from magic bytes, or None if unsupported."""
    for magic, fmt in ALLOWED_MAGIC_BYTES.items():
        if content.startswith(magic):
            if fmt == 'webp' and b'WEBP' not in content[:12]:
                return None
            return fmt
    return None


def decode_image(content: bytes, linear: bool = False) -> np.ndarray:
    """Decode image bytes into a linear RGB float32 buffer in [0, 1].

    16-bit PNG/TIFF keep their depth through OpenCV; everything else goes
    through Pillow with EXIF orientation applied.

    Args:
        content: Encoded image bytes
        linear: True if the file already holds linear light (no sRGB curve)

    Returns:
        Float32 image (H, W, 3) in R, G, B order

    Raises:
        ValueError: if the bytes cannot be decoded
    """
    if not content:
        raise ValueError("Empty image upload")
    decoded = cv2.imdecode(np.frombuffer(content, np.uint8), cv2.IMREAD_COLOR | cv2.IMREAD_ANYDEPTH)
    if decoded is not None and decoded.dtype == np.uint16:
        rgb = cv2.cvtColor(decoded, cv2.COLOR_BGR2RGB).astype(np.float32) / 65535.0
        logger.info(f"Decoded 16-bit image {rgb.shape[1]}x{rgb.shape[0]}")
    else:
        try:
            image = Image.open(io.BytesIO(content))
            image = ImageOps.exif_transpose(image)
            if image.mode != 'RGB':
                image = image.convert('RGB')
            rgb = np.asarray(image, dtype=np.float32) / 255.0
        except (OSError, ValueError) as e:
            raise ValueError(f"Could not decode image: {e}") from e
        logger.info(f"Decoded 8-bit image {rgb.shape[1]}x{rgb.shape[0]}")

    if not linear:
        rgb = srgb_to_linear(rgb).astype(np.float32)
    return rgb


def encode_png(image: np.ndarray) -> bytes:
    """Clip a linear RGB buffer to [0, 1], apply the sRGB curve and encode as 8-bit PNG."""
    image = validate_image(image)
    encoded = linear_to_srgb(np.clip(image, 0.0, 1.0))
    rgb8 = np.round(encoded * 255.0).astype(np.uint8)
    success, buffer = cv2.imencode('.png', cv2.cvtColor(rgb8, cv2.COLOR_RGB2BGR))
    if not success:
        raise ValueError("Failed to encode image as PNG")
    return buffer.tobytes()


def encode_png_data_uri(image: np.ndarray) -> str:
    """PNG-encode a linear RGB buffer as a data URI (data:image/png;base64,...)."""
    png_base64 = base64.b64encode(encode_png(image)).decode('utf-8')
    data_uri = f"data:image/png;base64,{png_base64}"
    logger.info(f"Encoded result image: {len(data_uri)} bytes")
    return data_uri
