"""Scene white point from camera white balance multipliers and color matrix.

The camera multipliers say how much each channel must be boosted to look
neutral, so their reciprocals are the relative energy the sensor actually
captured from a white object. Pushing that through the camera-to-XYZ
matrix gives the scene illuminant.
"""
import logging
from enum import Enum
from typing import NamedTuple, Optional, Sequence

import numpy as np

from .color_science import Chromaticity, TristimulusXYZ, xyz_to_xy
from .illuminants import (
    ColorTemperatureEstimate,
    calculate_duv,
    duv_to_ui_tint,
    estimate_temperature,
    is_valid_white_point,
    kelvin_to_xy,
    standard_illuminant,
    xy_to_kelvin,
)

logger = logging.getLogger(__name__)

MULTIPLIER_FLOOR = 1e-6
XYZ_FLOOR = 1e-9


class WhitePointStatus(str, Enum):
    """How a scene white point was obtained."""
    ESTIMATED = "estimated"
    LOCUS_FALLBACK = "locus_fallback"
    NO_CALIBRATION = "no_calibration"
    PIXEL_ESTIMATE = "pixel_estimate"


class CameraColorMetadata(NamedTuple):
    """White balance metadata reported by the raw decoder.

    white_balance_multipliers: (R, G1, B, G2), or (R, G, B)
    camera_to_xyz: 4x3 or 3x3, one row per camera channel, columns X, Y, Z
    """
    white_balance_multipliers: Sequence[float]
    camera_to_xyz: Sequence[Sequence[float]]


class SceneWhitePoint(NamedTuple):
    xy: Chromaticity
    xyz: TristimulusXYZ
    estimate: ColorTemperatureEstimate
    status: WhitePointStatus
    scene_rgb: tuple

    @property
    def is_fallback(self) -> bool:
        return self.status != WhitePointStatus.ESTIMATED


def normalized_multipliers(multipliers: Sequence[float]) -> np.ndarray:
    """Green-normalized (R, G, B) multipliers.

    G1 and G2 are averaged. A non-positive G2 means "same as G1" and a
    non-positive R or B is treated as neutral; everything is floored to a
    small positive value before dividing.
    """
    values = [float(m) for m in multipliers]
    if len(values) not in (3, 4):
        raise ValueError(f"Expected 3 or 4 white balance multipliers, got {len(values)}")

    r, g1, b = values[:3]
    g2 = values[3] if len(values) == 4 else g1
    if g1 <= 0 and g2 <= 0:
        g1 = g2 = 1.0
    elif g1 <= 0:
        g1 = g2
    elif g2 <= 0:
        g2 = g1
    g_avg = max(MULTIPLIER_FLOOR, (g1 + g2) * 0.5)

    r_norm = max(MULTIPLIER_FLOOR, r / g_avg) if r > 0 else 1.0
    b_norm = max(MULTIPLIER_FLOOR, b / g_avg) if b > 0 else 1.0
    return np.array([r_norm, 1.0, b_norm])


def reduce_camera_matrix(camera_to_xyz: Sequence[Sequence[float]]) -> np.ndarray:
    """Reduce a 4x3 (R, G1, B, G2) matrix to 3x3 by averaging the green rows.

    An all-zero G2 row (three-color sensors) leaves G1 as is.
    """
    matrix = np.asarray(camera_to_xyz, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[1] != 3 or matrix.shape[0] not in (3, 4):
        raise ValueError(f"camera_to_xyz must be 3x3 or 4x3, got shape {matrix.shape}")
    if matrix.shape[0] == 3:
        return matrix
    reduced = matrix[:3].copy()
    if np.any(matrix[3] != 0):
        reduced[1] = (matrix[1] + matrix[3]) * 0.5
    return reduced


def estimate_scene_white_point(
    multipliers: Sequence[float],
    camera_to_xyz: Optional[Sequence[Sequence[float]]],
) -> SceneWhitePoint:
    """Estimate the scene illuminant chromaticity.

    Args:
        multipliers: Camera white balance multipliers (R, G1, B[, G2])
        camera_to_xyz: Camera-to-XYZ matrix, rows per camera channel

    Returns:
        SceneWhitePoint. status is NO_CALIBRATION (with a D65 placeholder)
        when the matrix is missing or all zero, LOCUS_FALLBACK when the
        estimate was implausible and snapped onto the locus.
    """
    norm = normalized_multipliers(multipliers)
    scene_rgb = 1.0 / norm

    if camera_to_xyz is None or not np.any(np.asarray(camera_to_xyz, dtype=np.float64)):
        logger.warning("No camera calibration matrix, scene white point cannot be estimated")
        return _uncalibrated(scene_rgb)

    matrix = reduce_camera_matrix(camera_to_xyz)
    xyz = np.maximum(scene_rgb @ matrix, 0.0)
    if xyz[1] <= XYZ_FLOOR:
        logger.warning(f"Camera matrix gives no luminance for scene RGB {scene_rgb}")
        return _uncalibrated(scene_rgb)

    xyz = np.maximum(xyz / xyz[1], XYZ_FLOOR)
    xyz[1] = 1.0
    xy = xyz_to_xy(*xyz)
    status = WhitePointStatus.ESTIMATED

    if not is_valid_white_point(xy):
        cct = xy_to_kelvin(xy)
        logger.warning(
            f"Implausible white point ({xy.x:.4f}, {xy.y:.4f}), using locus at {cct:.0f}K"
        )
        xy = kelvin_to_xy(cct)
        xyz = np.array([xy.x / xy.y, 1.0, (1.0 - xy.x - xy.y) / xy.y])
        status = WhitePointStatus.LOCUS_FALLBACK

    estimate = estimate_temperature(xy)
    logger.info(
        f"Scene white point xy=({xy.x:.4f}, {xy.y:.4f}), "
        f"{estimate.cct_kelvin:.0f}K, Duv={estimate.duv:+.4f}"
    )
    return SceneWhitePoint(
        xy=xy,
        xyz=TristimulusXYZ(*(float(v) for v in xyz)),
        estimate=estimate,
        status=status,
        scene_rgb=tuple(float(v) for v in scene_rgb),
    )


def estimate_from_metadata(metadata: CameraColorMetadata) -> SceneWhitePoint:
    return estimate_scene_white_point(metadata.white_balance_multipliers, metadata.camera_to_xyz)


def _uncalibrated(scene_rgb: np.ndarray) -> SceneWhitePoint:
    xy = standard_illuminant("D65")
    return SceneWhitePoint(
        xy=xy,
        xyz=TristimulusXYZ(xy.x / xy.y, 1.0, (1.0 - xy.x - xy.y) / xy.y),
        estimate=estimate_temperature(xy),
        status=WhitePointStatus.NO_CALIBRATION,
        scene_rgb=tuple(float(v) for v in scene_rgb),
    )


def inspect_white_point(
    metadata: CameraColorMetadata,
    target: Chromaticity,
    tint_scale: float = 1000.0,
) -> dict:
    """Scene vs target white point report.

    UI tints are rounded to one decimal before the delta is taken so the
    three numbers agree when displayed.

    Returns:
        dict with scene, target and delta sections
    """
    scene = estimate_from_metadata(metadata)
    target_kelvin = xy_to_kelvin(target)
    target_duv = calculate_duv(target)

    scene_tint = round(duv_to_ui_tint(scene.estimate.duv, tint_scale), 1)
    target_tint = round(duv_to_ui_tint(target_duv, tint_scale), 1)

    return {
        "scene": {
            "xy": scene.xy,
            "kelvin": scene.estimate.cct_kelvin,
            "duv": scene.estimate.duv,
            "tint": scene_tint,
            "status": scene.status,
        },
        "target": {
            "xy": target,
            "kelvin": target_kelvin,
            "duv": target_duv,
            "tint": target_tint,
        },
        "delta": {
            "kelvin": target_kelvin - scene.estimate.cct_kelvin,
            "tint": round(target_tint - scene_tint, 1),
        },
    }
