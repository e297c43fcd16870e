"""Color space conversions between linear sRGB, XYZ, xy and UCS coordinates.

The sRGB matrices are the IEC 61966-2-1 coefficients and must stay verbatim:
other tools compare their results against these numbers.
"""
from typing import NamedTuple, Tuple

import cv2
import numpy as np

EPSILON = 1e-12


class Chromaticity(NamedTuple):
    """CIE 1931 xy chromaticity. Defaults to D65."""
    x: float = 0.3127
    y: float = 0.3290


class TristimulusXYZ(NamedTuple):
    """CIE XYZ tristimulus values (Y=1 for white points)."""
    X: float
    Y: float
    Z: float


D65_XY = Chromaticity(0.3127, 0.3290)

# sRGB (D65) <-> XYZ, IEC 61966-2-1:1999
SRGB_TO_XYZ = np.array([
    [0.4124564, 0.3575761, 0.1804375],
    [0.2126729, 0.7151522, 0.0721750],
    [0.0193339, 0.1191920, 0.9503041],
])

XYZ_TO_SRGB = np.array([
    [3.2404542, -1.5371385, -0.4985314],
    [-0.9692660, 1.8760108, 0.0415560],
    [0.0556434, -0.2040259, 1.0572252],
])


def srgb_to_linear(v):
    """Convert encoded sRGB [0-1] to linear light [0-1].

    Works on scalars and numpy arrays.

    Args:
        v: sRGB value(s) (0-1)

    Returns:
        Linear value(s) (0-1)
    """
    if np.isscalar(v):
        if v <= 0.04045:
            return v / 12.92
        return ((v + 0.055) / 1.055) ** 2.4
    v = np.asarray(v, dtype=np.float64)
    return np.where(v <= 0.04045, v / 12.92, ((np.maximum(v, 0.0) + 0.055) / 1.055) ** 2.4)


def linear_to_srgb(v):
    """Convert linear light [0-1] to encoded sRGB [0-1].

    Negative inputs are treated as black.
    """
    if np.isscalar(v):
        v = max(v, 0.0)
        if v <= 0.0031308:
            return v * 12.92
        return 1.055 * v ** (1 / 2.4) - 0.055
    v = np.maximum(np.asarray(v, dtype=np.float64), 0.0)
    return np.where(v <= 0.0031308, v * 12.92, 1.055 * v ** (1 / 2.4) - 0.055)


def linear_srgb_to_xyz(r: float, g: float, b: float) -> TristimulusXYZ:
    """Convert linear sRGB to CIE XYZ (D65, Y=1 for white).

    Args:
        r, g, b: Linear RGB values (0-1)

    Returns:
        TristimulusXYZ
    """
    x = r * 0.4124564 + g * 0.3575761 + b * 0.1804375
    y = r * 0.2126729 + g * 0.7151522 + b * 0.0721750
    z = r * 0.0193339 + g * 0.1191920 + b * 0.9503041
    return TristimulusXYZ(x, y, z)


def xyz_to_linear_srgb(X: float, Y: float, Z: float) -> Tuple[float, float, float]:
    """Convert CIE XYZ to linear sRGB. Output is not clipped."""
    r = 3.2404542 * X - 1.5371385 * Y - 0.4985314 * Z
    g = -0.9692660 * X + 1.8760108 * Y + 0.0415560 * Z
    b = 0.0556434 * X - 0.2040259 * Y + 1.0572252 * Z
    return r, g, b


def xyz_to_xy(X: float, Y: float, Z: float) -> Chromaticity:
    """Project XYZ onto the xy chromaticity plane.

    A near-zero sum returns D65 instead of dividing by zero.
    """
    total = X + Y + Z
    if total <= EPSILON:
        return D65_XY
    return Chromaticity(X / total, Y / total)


def xy_to_xyz(x: float, y: float, Y: float = 1.0) -> TristimulusXYZ:
    """Lift xy back to XYZ at luminance Y. y near zero gives black."""
    if y <= EPSILON:
        return TristimulusXYZ(0.0, 0.0, 0.0)
    return TristimulusXYZ(x * Y / y, Y, (1.0 - x - y) * Y / y)


def xyz_to_uv_prime(X: float, Y: float, Z: float) -> Tuple[float, float]:
    """CIE 1976 u'v'. A degenerate denominator gives (0, 0)."""
    denom = X + 15.0 * Y + 3.0 * Z
    if denom <= EPSILON:
        return 0.0, 0.0
    return 4.0 * X / denom, 9.0 * Y / denom


def uv_prime_to_xyz(u_prime: float, v_prime: float) -> TristimulusXYZ:
    """Inverse of xyz_to_uv_prime with Y=1."""
    if v_prime <= EPSILON:
        return TristimulusXYZ(0.0, 0.0, 0.0)
    X = 9.0 * u_prime / (4.0 * v_prime)
    Z = (12.0 - 3.0 * u_prime - 20.0 * v_prime) / (4.0 * v_prime)
    return TristimulusXYZ(X, 1.0, Z)


def xy_to_uv(x: float, y: float) -> Tuple[float, float]:
    """CIE 1960 UCS (u, v) from xy, used for CCT and Duv."""
    denom = -2.0 * x + 12.0 * y + 3.0
    if abs(denom) <= EPSILON:
        return 0.0, 0.0
    return 4.0 * x / denom, 6.0 * y / denom


def uv_to_xy(u: float, v: float) -> Chromaticity:
    """Inverse of xy_to_uv. A degenerate denominator gives D65."""
    denom = 2.0 * u - 8.0 * v + 4.0
    if abs(denom) <= EPSILON:
        return D65_XY
    return Chromaticity(3.0 * u / denom, 2.0 * v / denom)


def xyz_to_uv(X: float, Y: float, Z: float) -> Tuple[float, float]:
    """CIE 1960 UCS (u, v) from XYZ."""
    xy = xyz_to_xy(X, Y, Z)
    return xy_to_uv(xy.x, xy.y)


def validate_image(image: np.ndarray) -> np.ndarray:
    """Check the (H, W, 3) contract and return a float32 view for OpenCV.

    Raises:
        ValueError: if the buffer is not a non-empty 3-channel image
    """
    image = np.asarray(image)
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError(f"Expected an (H, W, 3) image buffer, got shape {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise ValueError("Image buffer is empty")
    return np.ascontiguousarray(image, dtype=np.float32)


def image_linear_srgb_to_xyz(image: np.ndarray) -> np.ndarray:
    """Convert a linear sRGB image (H, W, 3) to XYZ."""
    image = validate_image(image)
    return cv2.transform(image, SRGB_TO_XYZ)


def image_xyz_to_linear_srgb(image: np.ndarray) -> np.ndarray:
    """Convert an XYZ image (H, W, 3) back to linear sRGB."""
    image = validate_image(image)
    return cv2.transform(image, XYZ_TO_SRGB)
