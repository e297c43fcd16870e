"""RGB gain triples and their application to image buffers."""
import logging
import math
from typing import NamedTuple

import numpy as np

from .color_science import (
    Chromaticity,
    linear_srgb_to_xyz,
    validate_image,
    xy_to_xyz,
    xyz_to_linear_srgb,
    xyz_to_xy,
)

logger = logging.getLogger(__name__)

DEFAULT_CLAMP_MIN = 0.1
DEFAULT_CLAMP_MAX = 10.0
MIN_CHANNEL_MEAN = 1e-6


class RGBGainTriple(NamedTuple):
    """Per-channel multiplicative correction, in R, G, B order.

    Instances are immutable: the normalize/clamp methods return new triples.
    """
    red_gain: float = 1.0
    green_gain: float = 1.0
    blue_gain: float = 1.0

    @classmethod
    def from_neutral(cls, r: float, g: float, b: float) -> "RGBGainTriple":
        """Gains that map the color (r, g, b) to a neutral gray of equal mean.

        Channel values are floored at 1e-6 before dividing.
        """
        r = max(MIN_CHANNEL_MEAN, r)
        g = max(MIN_CHANNEL_MEAN, g)
        b = max(MIN_CHANNEL_MEAN, b)
        target = (r + g + b) / 3.0
        return cls(target / r, target / g, target / b)

    def normalize_to_green(self) -> "RGBGainTriple":
        """Scale so that green_gain is exactly 1.0."""
        if self.green_gain <= 1e-9:
            return self
        return RGBGainTriple(self.red_gain / self.green_gain, 1.0, self.blue_gain / self.green_gain)

    def normalize_average(self) -> "RGBGainTriple":
        """Scale so that the mean of the three gains is 1.0 (brightness preserving)."""
        avg = (self.red_gain + self.green_gain + self.blue_gain) / 3.0
        if avg <= 1e-9:
            return self
        return RGBGainTriple(self.red_gain / avg, self.green_gain / avg, self.blue_gain / avg)

    def clamp(self, min_gain: float = DEFAULT_CLAMP_MIN, max_gain: float = DEFAULT_CLAMP_MAX) -> "RGBGainTriple":
        """Clip every gain into [min_gain, max_gain]."""
        return RGBGainTriple(*(max(min_gain, min(max_gain, g)) for g in self))

    def compose(self, other: "RGBGainTriple") -> "RGBGainTriple":
        """Elementwise product: applying the result equals applying self then other."""
        return RGBGainTriple(
            self.red_gain * other.red_gain,
            self.green_gain * other.green_gain,
            self.blue_gain * other.blue_gain,
        )

    def neutral_xy(self) -> Chromaticity:
        """Chromaticity of the linear sRGB color these gains neutralize."""
        r, g, b = (1.0 / max(MIN_CHANNEL_MEAN, v) for v in self)
        return xyz_to_xy(*linear_srgb_to_xyz(r, g, b))

    def as_array(self) -> np.ndarray:
        return np.array([self.red_gain, self.green_gain, self.blue_gain])


def apply_gains(image: np.ndarray, gains: RGBGainTriple) -> np.ndarray:
    """Multiply each channel by its gain.

    The input is left untouched and the output is not clipped; clipping to
    a displayable range belongs to the encoder.

    Args:
        image: Linear RGB image (H, W, 3), float
        gains: Gain triple in R, G, B order

    Returns:
        New float image (H, W, 3)
    """
    image = np.asarray(image)
    validate_image(image)
    if not np.issubdtype(image.dtype, np.floating):
        image = image.astype(np.float32)
    return image * np.asarray(gains, dtype=image.dtype)


def gains_from_kelvin_tint(kelvin: float, tint: float = 0.0) -> RGBGainTriple:
    """Approximate gains for a UI Temperature/Tint pair.

    A low Temperature setting compensates warm light and cools the image;
    a high one warms it. Positive tint pushes toward magenta. The result is
    brightness preserving (mean gain 1.0).

    Args:
        kelvin: Temperature setting, clamped to [2000, 12000]
        tint: UI tint, roughly -150..150

    Returns:
        RGBGainTriple
    """
    kelvin = max(2000.0, min(12000.0, kelvin))

    if kelvin < 6500.0:
        factor = (6500.0 - kelvin) / 4500.0
        red, green, blue = 1.0 - factor * 0.4, 1.0, 1.0 + factor * 0.5
    else:
        factor = (kelvin - 6500.0) / 5500.0
        red, green, blue = 1.0 + factor * 0.5, 1.0, 1.0 - factor * 0.4

    if abs(tint) > 1e-6:
        tint_factor = tint / 100.0
        green *= math.exp(-tint_factor * 0.2)
        red *= 1.0 + tint_factor * 0.05
        blue *= 1.0 + tint_factor * 0.05

    return RGBGainTriple(red, green, blue).normalize_average()


def gains_between_temperatures(
    source_kelvin: float,
    target_kelvin: float,
    source_tint: float = 0.0,
    target_tint: float = 0.0,
) -> RGBGainTriple:
    """First-order gains moving a rendering from one Temperature/Tint to another.

    Uses an R/B power-law ratio rather than a full color matrix, so it is
    an approximation only. Green-referenced.
    """
    source_kelvin = max(1000.0, source_kelvin)
    target_kelvin = max(1000.0, target_kelvin)
    source_rb = (5500.0 / source_kelvin) ** 0.7
    target_rb = (5500.0 / target_kelvin) ** 0.7

    red = target_rb / source_rb
    blue = source_rb / target_rb

    tint_diff = target_tint - source_tint
    if abs(tint_diff) > 1e-6:
        tint_factor = max(0.0, 1.0 + tint_diff * 0.01)
        red *= tint_factor
        blue *= tint_factor

    gains = RGBGainTriple(red, 1.0, blue)
    logger.debug(f"Gains {source_kelvin:.0f}K -> {target_kelvin:.0f}K: {gains}")
    return gains


def gains_between_white_points(
    source_xy: Chromaticity,
    target_xy: Chromaticity,
    min_gain: float = DEFAULT_CLAMP_MIN,
    max_gain: float = DEFAULT_CLAMP_MAX,
) -> RGBGainTriple:
    """Per-channel gains taking the source white to the target white in linear sRGB.

    This is the first-order (von Kries in RGB) counterpart of the
    chromatic adaptation transform. Green-referenced and clamped.
    """
    source_rgb = xyz_to_linear_srgb(*xy_to_xyz(*source_xy))
    target_rgb = xyz_to_linear_srgb(*xy_to_xyz(*target_xy))
    gains = RGBGainTriple(*(t / max(MIN_CHANNEL_MEAN, s) for s, t in zip(source_rgb, target_rgb)))
    return gains.normalize_to_green().clamp(min_gain, max_gain)
