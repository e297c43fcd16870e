"""Correlated color temperature, Duv and standard illuminants.

Duv sign convention, used everywhere in this package:
    positive Duv = above the locus in CIE 1960 v = shifted toward green
    negative Duv = below the locus in CIE 1960 v = shifted toward magenta

The UI tint scale runs the other way (positive tint = magenta), see
ui_tint_to_duv().
"""
import logging
import math
from typing import NamedTuple

import numpy as np

from .color_science import (
    Chromaticity,
    linear_srgb_to_xyz,
    uv_to_xy,
    xy_to_uv,
    xyz_to_xy,
)

logger = logging.getLogger(__name__)

KELVIN_MIN = 1000.0
KELVIN_MAX = 25000.0
CCT_MIN = 1000.0
CCT_MAX = 40000.0
# Lowest temperature the CIE cubic spline is fitted for
LOCUS_FIT_MIN = 1667.0
FALLBACK_CCT = 6500.0
DEFAULT_TINT_SCALE = 1000.0
TANGENT_STEP_K = 10.0

# Nominal CCT of the standard illuminants
ILLUMINANT_A = 2856.0
ILLUMINANT_D50 = 5003.0
ILLUMINANT_D55 = 5503.0
ILLUMINANT_D65 = 6504.0
ILLUMINANT_D75 = 7504.0

STANDARD_ILLUMINANTS = {
    "A": Chromaticity(0.44757, 0.40745),
    "D50": Chromaticity(0.34567, 0.35851),
    "D55": Chromaticity(0.33242, 0.34743),
    "D65": Chromaticity(0.31271, 0.32902),
    "D75": Chromaticity(0.29902, 0.31485),
    "E": Chromaticity(1.0 / 3.0, 1.0 / 3.0),
}

TEMPERATURE_DESCRIPTIONS = [
    (2500, "candlelight"),
    (3000, "tungsten"),
    (3500, "warm indoor light"),
    (4500, "sunrise / sunset"),
    (5500, "morning / evening sun"),
    (6500, "noon daylight"),
    (7500, "overcast"),
    (9000, "haze"),
    (11000, "high altitude / snow"),
]


class ColorTemperatureEstimate(NamedTuple):
    """CCT in Kelvin plus signed Duv (positive = green)."""
    cct_kelvin: float
    duv: float


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def standard_illuminant(name: str) -> Chromaticity:
    """Look up a standard illuminant white point by name.

    Args:
        name: "A", "D50", "D55", "D65", "D75" or "E" (case-insensitive)

    Returns:
        Chromaticity of the illuminant

    Raises:
        ValueError: for an unknown name
    """
    key = name.strip().upper()
    if key not in STANDARD_ILLUMINANTS:
        raise ValueError(
            f"Unknown illuminant '{name}', expected one of {sorted(STANDARD_ILLUMINANTS)}"
        )
    return STANDARD_ILLUMINANTS[key]


def kelvin_to_xy(kelvin: float) -> Chromaticity:
    """CIE cubic-spline approximation of the Planckian locus.

    Kelvin is clamped to [1000, 25000]. The spline is only fitted from
    1667 K, so anything colder returns the 1667 K point.

    Args:
        kelvin: Color temperature in K

    Returns:
        Chromaticity on the locus
    """
    T = _clamp(float(kelvin), KELVIN_MIN, KELVIN_MAX)
    T = max(T, LOCUS_FIT_MIN)

    if T < 4000.0:
        x = -0.2661239e9 / T ** 3 - 0.2343589e6 / T ** 2 + 0.8776956e3 / T + 0.179910
    else:
        x = -3.0258469e9 / T ** 3 + 2.1070379e6 / T ** 2 + 0.2226347e3 / T + 0.240390

    x2 = x * x
    x3 = x2 * x
    if T < 2222.0:
        y = -1.1063814 * x3 - 1.34811020 * x2 + 2.18555832 * x - 0.20219683
    elif T < 4000.0:
        y = -0.9549476 * x3 - 1.37418593 * x2 + 2.09137015 * x - 0.16748867
    else:
        y = 3.0817580 * x3 - 5.87338670 * x2 + 3.75112997 * x - 0.37001483

    return Chromaticity(x, y)


def daylight_xy(kelvin: float) -> Chromaticity:
    """Coarse daylight approximation: spline x with the low-regime y cubic."""
    T = _clamp(float(kelvin), LOCUS_FIT_MIN, KELVIN_MAX)
    if T <= 4000.0:
        x = -0.2661239e9 / T ** 3 - 0.2343580e6 / T ** 2 + 0.8776956e3 / T + 0.179910
    else:
        x = -3.0258469e9 / T ** 3 + 2.1070379e6 / T ** 2 + 0.2226347e3 / T + 0.240390
    y = -1.1063814 * x ** 3 - 1.34811020 * x ** 2 + 2.18555832 * x - 0.20219683
    return Chromaticity(x, y)


def planckian_xy(kelvin: float) -> Chromaticity:
    """Krystek (1985) rational approximation of the blackbody locus.

    Valid for 1000-15000 K; kelvin is clamped to that range.
    """
    T = _clamp(float(kelvin), 1000.0, 15000.0)
    u = (0.860117757 + 1.54118254e-4 * T + 1.28641212e-7 * T * T) / \
        (1.0 + 8.42420235e-4 * T + 7.08145163e-7 * T * T)
    v = (0.317398726 + 4.22806245e-5 * T + 4.20481691e-8 * T * T) / \
        (1.0 - 2.89741816e-5 * T + 1.61456053e-7 * T * T)
    return uv_to_xy(u, v)


def xy_to_kelvin(xy: Chromaticity) -> float:
    """McCamy (1992) CCT approximation, clamped to [1000, 40000].

    The formula diverges when y approaches 0.1858; that case returns
    6500 K instead of infinity.
    """
    x, y = xy
    denom = 0.1858 - y
    if abs(denom) < 1e-12:
        logger.warning(f"McCamy CCT undefined at y={y:.4f}, using {FALLBACK_CCT:.0f}K")
        return FALLBACK_CCT
    n = (x - 0.3320) / denom
    cct = 449.0 * n ** 3 + 3525.0 * n ** 2 + 6823.3 * n + 5520.33
    if not math.isfinite(cct):
        return FALLBACK_CCT
    return _clamp(cct, CCT_MIN, CCT_MAX)


def _locus_uv(kelvin):
    """Vectorized kelvin_to_xy followed by xy_to_uv."""
    T = np.clip(np.asarray(kelvin, dtype=np.float64), LOCUS_FIT_MIN, KELVIN_MAX)
    low = T < 4000.0
    x = np.where(
        low,
        -0.2661239e9 / T ** 3 - 0.2343589e6 / T ** 2 + 0.8776956e3 / T + 0.179910,
        -3.0258469e9 / T ** 3 + 2.1070379e6 / T ** 2 + 0.2226347e3 / T + 0.240390,
    )
    y = np.where(
        T < 2222.0,
        -1.1063814 * x ** 3 - 1.34811020 * x ** 2 + 2.18555832 * x - 0.20219683,
        np.where(
            low,
            -0.9549476 * x ** 3 - 1.37418593 * x ** 2 + 2.09137015 * x - 0.16748867,
            3.0817580 * x ** 3 - 5.87338670 * x ** 2 + 3.75112997 * x - 0.37001483,
        ),
    )
    denom = -2.0 * x + 12.0 * y + 3.0
    return 4.0 * x / denom, 6.0 * y / denom


def nearest_locus_kelvin(xy: Chromaticity) -> float:
    """Temperature of the locus point closest to xy in CIE 1960 (u, v).

    Scans the fitted range on a 0.5 mired grid, then refines the best
    bracket with a golden-section search.
    """
    u, v = xy_to_uv(*xy)

    # arange stops short of the coldest fitted point, so append it
    mireds = np.append(np.arange(1e6 / KELVIN_MAX, 1e6 / LOCUS_FIT_MIN, 0.5), 1e6 / LOCUS_FIT_MIN)
    lu, lv = _locus_uv(1e6 / mireds)
    dist = (lu - u) ** 2 + (lv - v) ** 2
    best = int(np.argmin(dist))

    def distance(mired):
        pu, pv = _locus_uv(1e6 / mired)
        return float((pu - u) ** 2 + (pv - v) ** 2)

    lo = mireds[max(best - 1, 0)]
    hi = mireds[min(best + 1, len(mireds) - 1)]
    ratio = (math.sqrt(5.0) - 1.0) / 2.0
    c = hi - ratio * (hi - lo)
    d = lo + ratio * (hi - lo)
    fc, fd = distance(c), distance(d)
    for _ in range(60):
        if fc < fd:
            hi, d, fd = d, c, fc
            c = hi - ratio * (hi - lo)
            fc = distance(c)
        else:
            lo, c, fc = c, d, fd
            d = lo + ratio * (hi - lo)
            fd = distance(d)

    candidates = [(float(dist[best]), float(mireds[best])), (fc, c), (fd, d)]
    _, mired = min(candidates)
    return 1e6 / mired


def calculate_duv(xy: Chromaticity) -> float:
    """Signed distance from the locus in CIE 1960 (u, v).

    Sign: test point below the locus point in v is negative (magenta),
    otherwise positive (green).
    """
    cct = nearest_locus_kelvin(xy)
    locus = kelvin_to_xy(cct)

    u, v = xy_to_uv(*xy)
    u_locus, v_locus = xy_to_uv(*locus)
    duv = math.hypot(u - u_locus, v - v_locus)
    if v < v_locus:
        duv = -duv
    return duv


def apply_duv_to_kelvin(kelvin: float, duv: float) -> Chromaticity:
    """Offset the locus point at kelvin by duv along the locus normal.

    The normal is oriented toward increasing v so that a positive duv
    moves toward green, matching calculate_duv().
    """
    base = kelvin_to_xy(kelvin)
    if abs(duv) < 1e-12:
        return base

    u, v = xy_to_uv(*base)
    T = _clamp(float(kelvin), LOCUS_FIT_MIN, KELVIN_MAX)
    step = TANGENT_STEP_K if T + TANGENT_STEP_K <= KELVIN_MAX else -TANGENT_STEP_K
    u_next, v_next = xy_to_uv(*kelvin_to_xy(T + step))

    du = u_next - u
    dv = v_next - v
    mag = math.hypot(du, dv)
    if mag < 1e-12:
        return base

    perp_u, perp_v = -dv / mag, du / mag
    if perp_v < 0:
        perp_u, perp_v = -perp_u, -perp_v

    return uv_to_xy(u + perp_u * duv, v + perp_v * duv)


def ui_tint_to_duv(tint_ui: float, scale: float = DEFAULT_TINT_SCALE) -> float:
    """Map a UI tint slider value to Duv.

    Linear presentational scale, not a physical law: positive tint means
    magenta, which is negative Duv.
    """
    if scale <= 1e-9:
        scale = DEFAULT_TINT_SCALE
    return -tint_ui / scale


def duv_to_ui_tint(duv: float, scale: float = DEFAULT_TINT_SCALE) -> float:
    """Inverse of ui_tint_to_duv()."""
    if scale <= 1e-9:
        scale = DEFAULT_TINT_SCALE
    return -duv * scale


def estimate_temperature(xy: Chromaticity) -> ColorTemperatureEstimate:
    """McCamy CCT and signed Duv for a chromaticity."""
    return ColorTemperatureEstimate(xy_to_kelvin(xy), calculate_duv(xy))


def estimate_from_linear_srgb(avg_r: float, avg_g: float, avg_b: float) -> ColorTemperatureEstimate:
    """CCT and Duv of an average linear sRGB color (e.g. an unbalanced image mean)."""
    xyz = linear_srgb_to_xyz(avg_r, avg_g, avg_b)
    return estimate_temperature(xyz_to_xy(*xyz))


def is_valid_white_point(xy: Chromaticity) -> bool:
    """Rough plausibility check: x, y within [0.2, 0.5] and |Duv| <= 0.1."""
    x, y = xy
    if not (0.2 <= x <= 0.5 and 0.2 <= y <= 0.5):
        return False
    return abs(calculate_duv(xy)) <= 0.1


def describe_temperature(kelvin: float) -> str:
    """Short human-readable label for a color temperature."""
    for upper, label in TEMPERATURE_DESCRIPTIONS:
        if kelvin < upper:
            return label
    return "deep blue sky"
