"""Chromatic adaptation transforms (Bradford, CAT02, von Kries).

Adaptation follows http://brucelindbloom.com/Eqn_ChromAdapt.html:
    M = CAT^-1 * diag(L_d/L_s, M_d/M_s, S_d/S_s) * CAT
Unlike per-channel gains, this is allowed to shift hue and saturation.
"""
import logging
from typing import Sequence, Union

import cv2
import numpy as np

from .color_science import (
    SRGB_TO_XYZ,
    Chromaticity,
    TristimulusXYZ,
    validate_image,
    xy_to_xyz,
)
from .config import CATMethod

logger = logging.getLogger(__name__)

IDENTITY_TOLERANCE = 1e-9
LMS_FLOOR = 1e-12

CAT_MATRICES = {
    CATMethod.BRADFORD: np.array([
        [0.8951, 0.2664, -0.1614],
        [-0.7502, 1.7135, 0.0367],
        [0.0389, -0.0685, 1.0296],
    ]),
    CATMethod.CAT02: np.array([
        [0.7328, 0.4296, -0.1624],
        [-0.7036, 1.6975, 0.0061],
        [0.0030, 0.0136, 0.9834],
    ]),
    # Hunt-Pointer-Estevez normalized to D65
    CATMethod.VON_KRIES: np.array([
        [0.40024, 0.70760, -0.08081],
        [-0.22630, 1.16532, 0.04570],
        [0.0, 0.0, 0.91822],
    ]),
}

WhitePoint = Union[Chromaticity, TristimulusXYZ, Sequence[float]]


def get_cat_matrix(method: Union[str, CATMethod] = CATMethod.BRADFORD) -> np.ndarray:
    """Cone response matrix for a method name.

    Raises:
        ValueError: for an unknown method
    """
    try:
        return CAT_MATRICES[CATMethod(method)]
    except ValueError:
        raise ValueError(
            f"Unknown CAT method '{method}', expected one of {[m.value for m in CATMethod]}"
        ) from None


def white_point_xyz(white: WhitePoint) -> np.ndarray:
    """Normalize a white point given as xy (2 values) or XYZ (3 values) to XYZ with Y=1."""
    values = tuple(float(v) for v in white)
    if len(values) == 2:
        return np.array(xy_to_xyz(values[0], values[1], 1.0))
    if len(values) == 3:
        X, Y, Z = values
        if Y <= 1e-12:
            raise ValueError(f"White point XYZ must have positive Y, got {values}")
        return np.array([X / Y, 1.0, Z / Y])
    raise ValueError(f"White point must be xy or XYZ, got {len(values)} values")


def adaptation_matrix(
    source_white: WhitePoint,
    target_white: WhitePoint,
    method: Union[str, CATMethod] = CATMethod.BRADFORD,
) -> np.ndarray:
    """3x3 XYZ -> XYZ matrix adapting colors seen under source to target.

    Returns the exact identity when both white points coincide.
    """
    cat = get_cat_matrix(method)
    source = white_point_xyz(source_white)
    target = white_point_xyz(target_white)

    if np.max(np.abs(source - target)) <= IDENTITY_TOLERANCE:
        return np.eye(3)

    lms_source = np.maximum(cat @ source, LMS_FLOOR)
    lms_target = cat @ target
    scale = np.diag(lms_target / lms_source)
    return np.linalg.inv(cat) @ scale @ cat


def rgb_adaptation_matrix(
    source_white: WhitePoint,
    target_white: WhitePoint,
    method: Union[str, CATMethod] = CATMethod.BRADFORD,
    rgb_to_xyz: np.ndarray = SRGB_TO_XYZ,
) -> np.ndarray:
    """Adaptation expressed directly on linear RGB: RGB->XYZ, adapt, XYZ->RGB."""
    xyz_matrix = adaptation_matrix(source_white, target_white, method)
    if np.array_equal(xyz_matrix, np.eye(3)):
        return np.eye(3)
    rgb_to_xyz = np.asarray(rgb_to_xyz, dtype=np.float64)
    if rgb_to_xyz.shape != (3, 3):
        raise ValueError(f"rgb_to_xyz must be 3x3, got {rgb_to_xyz.shape}")
    return np.linalg.inv(rgb_to_xyz) @ xyz_matrix @ rgb_to_xyz


def adapt_xyz(
    xyz: Sequence[float],
    source_white: WhitePoint,
    target_white: WhitePoint,
    method: Union[str, CATMethod] = CATMethod.BRADFORD,
) -> TristimulusXYZ:
    """Adapt a single XYZ color."""
    result = adaptation_matrix(source_white, target_white, method) @ np.asarray(xyz, dtype=np.float64)
    return TristimulusXYZ(*(float(v) for v in result))


def adapt_image(
    image: np.ndarray,
    source_white: WhitePoint,
    target_white: WhitePoint,
    method: Union[str, CATMethod] = CATMethod.BRADFORD,
    rgb_to_xyz: np.ndarray = SRGB_TO_XYZ,
) -> np.ndarray:
    """Apply chromatic adaptation to every pixel of a linear RGB image.

    Args:
        image: Linear RGB image (H, W, 3)
        source_white: Scene white point (xy or XYZ)
        target_white: Desired white point (xy or XYZ)
        method: Cone response matrix
        rgb_to_xyz: Working space primaries, sRGB by default

    Returns:
        New float32 image; values are not clipped
    """
    image = validate_image(image)
    matrix = rgb_adaptation_matrix(source_white, target_white, method, rgb_to_xyz)
    if np.array_equal(matrix, np.eye(3)):
        logger.info("Source and target white points coincide, adaptation is identity")
        return image.copy()

    logger.info(f"Adapting {image.shape[1]}x{image.shape[0]} image with {CATMethod(method).value}")
    return cv2.transform(image, matrix)
