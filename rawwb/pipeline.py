"""End-to-end white balance: pick a source and target white point, then correct.

Decoding and encoding stay outside; this module takes a linear RGB buffer
plus optional camera metadata and returns a new buffer.
"""
import logging
from typing import NamedTuple, Optional

import numpy as np

from .adaptation import adapt_image
from .color_science import Chromaticity, linear_srgb_to_xyz, validate_image, xyz_to_xy
from .config import CorrectionMethod, WhiteBalanceSettings, WhiteSource
from .estimators import estimate_gains
from .gains import RGBGainTriple, apply_gains, gains_between_white_points
from .illuminants import (
    ColorTemperatureEstimate,
    apply_duv_to_kelvin,
    estimate_temperature,
    standard_illuminant,
)
from .scene import CameraColorMetadata, WhitePointStatus, estimate_from_metadata

logger = logging.getLogger(__name__)

# White of the linear sRGB working space, i.e. what RGB (1, 1, 1) looks like
SRGB_WHITE_XY = xyz_to_xy(*linear_srgb_to_xyz(1.0, 1.0, 1.0))


class BalanceResult(NamedTuple):
    image: np.ndarray
    source_xy: Chromaticity
    target_xy: Chromaticity
    source_estimate: ColorTemperatureEstimate
    target_estimate: ColorTemperatureEstimate
    status: WhitePointStatus
    method: CorrectionMethod
    gains: Optional[RGBGainTriple] = None


class GainAnalysis(NamedTuple):
    gains: RGBGainTriple
    illuminant_xy: Chromaticity
    illuminant_estimate: ColorTemperatureEstimate
    image_xy: Chromaticity
    image_estimate: ColorTemperatureEstimate


def resolve_target(settings: WhiteBalanceSettings) -> Chromaticity:
    """Target white point: explicit xy, then kelvin + duv, then the named illuminant."""
    if settings.target_xy is not None:
        return Chromaticity(*settings.target_xy)
    if settings.target_kelvin is not None:
        return apply_duv_to_kelvin(settings.target_kelvin, settings.target_duv)
    return standard_illuminant(settings.target_illuminant)


def image_mean_xy(image: np.ndarray) -> Chromaticity:
    """Chromaticity of the mean color of a linear sRGB image."""
    image = validate_image(image)
    r, g, b = (float(v) for v in image.reshape(-1, 3).mean(axis=0))
    return xyz_to_xy(*linear_srgb_to_xyz(r, g, b))


def image_temperature(image: np.ndarray) -> ColorTemperatureEstimate:
    """CCT/Duv of the mean color of an unbalanced linear sRGB image."""
    return estimate_temperature(image_mean_xy(image))


def analyze_gains(image: np.ndarray, settings: Optional[WhiteBalanceSettings] = None) -> GainAnalysis:
    """Estimate gains from pixels and describe the illuminant they imply."""
    settings = settings or WhiteBalanceSettings()
    gains = estimate_gains(image, settings.algorithm, settings.algorithm_config)
    illuminant_xy = gains.neutral_xy()
    image_xy = image_mean_xy(image)
    return GainAnalysis(
        gains=gains,
        illuminant_xy=illuminant_xy,
        illuminant_estimate=estimate_temperature(illuminant_xy),
        image_xy=image_xy,
        image_estimate=estimate_temperature(image_xy),
    )


def balance_image(
    image: np.ndarray,
    metadata: Optional[CameraColorMetadata] = None,
    settings: Optional[WhiteBalanceSettings] = None,
) -> BalanceResult:
    """White balance a linear sRGB image.

    The source white comes from camera metadata (source=camera) or from
    the pixel estimators (source=auto). A camera source with no usable
    calibration falls back to the pixel estimate and says so in status.

    Args:
        image: Linear RGB image (H, W, 3)
        metadata: Camera multipliers and matrix, if available
        settings: Source/target/method selection

    Returns:
        BalanceResult with a new image buffer
    """
    settings = settings or WhiteBalanceSettings()
    image = validate_image(image)
    target_xy = resolve_target(settings)
    config = settings.algorithm_config

    source_xy = None
    gains = None
    status = WhitePointStatus.PIXEL_ESTIMATE

    if settings.source == WhiteSource.CAMERA:
        if metadata is None:
            logger.warning("Camera white balance requested without metadata, estimating from pixels")
        else:
            scene = estimate_from_metadata(metadata)
            if scene.status == WhitePointStatus.NO_CALIBRATION:
                logger.warning("Camera metadata has no calibration, estimating from pixels")
            else:
                source_xy = scene.xy
                status = scene.status

    if source_xy is None:
        gains = estimate_gains(image, settings.algorithm, config)
        source_xy = gains.neutral_xy()

    if settings.method == CorrectionMethod.ADAPTATION:
        output = adapt_image(image, source_xy, target_xy, settings.cat_method)
        gains = None
    else:
        shift = gains_between_white_points(
            SRGB_WHITE_XY if gains is not None else source_xy,
            target_xy,
            config.gain_clamp_min,
            config.gain_clamp_max,
        )
        gains = shift if gains is None else gains.compose(shift)
        output = apply_gains(image, gains)

    source_estimate = estimate_temperature(source_xy)
    target_estimate = estimate_temperature(target_xy)
    logger.info(
        f"Balanced {source_estimate.cct_kelvin:.0f}K/{source_estimate.duv:+.4f} -> "
        f"{target_estimate.cct_kelvin:.0f}K/{target_estimate.duv:+.4f} "
        f"({settings.method.value}, {status.value})"
    )
    return BalanceResult(
        image=output,
        source_xy=source_xy,
        target_xy=target_xy,
        source_estimate=source_estimate,
        target_estimate=target_estimate,
        status=status,
        method=settings.method,
        gains=gains,
    )
