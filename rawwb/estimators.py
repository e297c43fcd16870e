"""Automatic white balance gain estimation from pixel statistics.

All estimators share the signature (image, config) -> RGBGainTriple and
treat the image as read-only. Images are linear RGB (H, W, 3) floats in
R, G, B order with values nominally in [0, 1].
"""
import logging
from typing import Callable, Dict, Optional, Union

import cv2
import numpy as np

from .color_science import validate_image
from .config import Algorithm, AlgorithmConfig
from .gains import MIN_CHANNEL_MEAN, RGBGainTriple

logger = logging.getLogger(__name__)

COMBINED_WEIGHTS = {
    Algorithm.GRAY_WORLD: 0.4,
    Algorithm.WHITE_POINT: 0.3,
    Algorithm.PERFECT_REFLECTOR: 0.3,
}


def _channel_extrema(image: np.ndarray):
    r, g, b = cv2.split(image)
    max_channel = cv2.max(cv2.max(r, g), b)
    min_channel = cv2.min(cv2.min(r, g), b)
    return max_channel, min_channel


def _masked_mean(image: np.ndarray, mask: np.ndarray):
    """Channel means over mask, floored at 1e-6. An empty mask gives the floor."""
    mean = cv2.mean(image, mask=mask.astype(np.uint8))
    return tuple(max(MIN_CHANNEL_MEAN, m) for m in mean[:3])


def gray_world(image: np.ndarray, config: Optional[AlgorithmConfig] = None) -> RGBGainTriple:
    """Gray-world assumption over well-exposed, weakly colored pixels.

    Pixels are dropped when their max channel reaches the highlight
    threshold, their min channel is at or below the shadow threshold, or
    their saturation (max-min)/max is 0.8 or more.

    Returns:
        Green-referenced gains clamped to the config band
    """
    config = config or AlgorithmConfig()
    image = validate_image(image)

    max_channel, min_channel = _channel_extrema(image)
    safe_max = np.where(max_channel < 1e-6, 1.0, max_channel)
    saturation = (max_channel - min_channel) / safe_max

    mask = (
        (max_channel < config.highlight_threshold)
        & (min_channel > config.shadow_threshold)
        & (saturation < config.gray_world_saturation_max)
    )
    valid = int(np.count_nonzero(mask))
    if valid == 0:
        logger.warning("Gray-world: no pixels passed the exposure/saturation mask")

    r_mean, g_mean, b_mean = _masked_mean(image, mask)
    gains = RGBGainTriple(g_mean / r_mean, 1.0, g_mean / b_mean)
    logger.info(f"Gray-world over {valid} pixels: mean=({r_mean:.4f}, {g_mean:.4f}, {b_mean:.4f})")
    return gains.clamp(*config.gain_band)


def white_point(image: np.ndarray, config: Optional[AlgorithmConfig] = None) -> RGBGainTriple:
    """Average the brightest, near-neutral pixels and neutralize them.

    Candidates are pixels at or above the white_percentile of luminance
    (unweighted channel mean) whose saturation is below
    white_saturation_max.
    """
    config = config or AlgorithmConfig()
    image = validate_image(image)

    luminance = image.mean(axis=2)
    values = np.sort(luminance, axis=None)
    idx = min(int(values.size * config.white_percentile), values.size - 1)
    threshold = values[idx]

    max_channel, min_channel = _channel_extrema(image)
    saturation = (max_channel - min_channel) / (max_channel + 1e-6)
    mask = (luminance >= threshold) & (saturation < config.white_saturation_max)

    valid = int(np.count_nonzero(mask))
    if valid == 0:
        logger.warning("White-point: no bright neutral pixels found")

    r_white, g_white, b_white = _masked_mean(image, mask)
    gains = RGBGainTriple.from_neutral(r_white, g_white, b_white).normalize_to_green()
    logger.info(f"White-point over {valid} pixels (lum >= {threshold:.4f})")
    return gains.clamp(*config.gain_band)


def perfect_reflector(image: np.ndarray, config: Optional[AlgorithmConfig] = None) -> RGBGainTriple:
    """Treat the brightest patches as a white reflector.

    Square patches of patch_size with 50% overlap are averaged; those whose
    mean luminance exceeds reflectance_threshold are pooled. Falls back to
    gray_world() when no patch qualifies.
    """
    config = config or AlgorithmConfig()
    image = validate_image(image)

    rows, cols = image.shape[:2]
    size = config.patch_size
    stride = max(1, size // 2)

    ys = np.arange(0, rows - size + 1, stride)
    xs = np.arange(0, cols - size + 1, stride)
    if ys.size == 0 or xs.size == 0:
        logger.warning(f"Perfect-reflector: image {cols}x{rows} smaller than patch {size}, using gray-world")
        return gray_world(image, config)

    # Patch sums from the summed-area table
    integral = cv2.integral(image)
    y0, x0 = np.meshgrid(ys, xs, indexing="ij")
    y1, x1 = y0 + size, x0 + size
    sums = integral[y1, x1] - integral[y0, x1] - integral[y1, x0] + integral[y0, x0]
    patch_means = sums.reshape(-1, 3) / float(size * size)

    luminance = patch_means.mean(axis=1)
    bright = patch_means[luminance > config.reflectance_threshold]
    if bright.shape[0] == 0:
        logger.warning("Perfect-reflector: no patch above reflectance threshold, using gray-world")
        return gray_world(image, config)

    avg = bright.mean(axis=0)
    gains = RGBGainTriple.from_neutral(*avg).normalize_to_green()
    logger.info(f"Perfect-reflector: {bright.shape[0]}/{patch_means.shape[0]} bright patches")
    return gains.clamp(*config.gain_band)


def simple_white_balance(image: np.ndarray, config: Optional[AlgorithmConfig] = None) -> RGBGainTriple:
    """Per-channel percentile stretch.

    For each channel the low and high simple_wb_percentile values give a
    provisional gain 1/(high-low). A flat channel yields a huge but
    finite gain, which normalization and clamping absorb.
    """
    config = config or AlgorithmConfig()
    image = validate_image(image)
    p = config.simple_wb_percentile

    scales = []
    for channel in cv2.split(image):
        values = np.sort(channel, axis=None)
        n = values.size
        low_idx = min(int(n * (p / 100.0)), n - 1)
        high_idx = min(int(n * (1.0 - p / 100.0)), n - 1)
        low, high = float(values[low_idx]), float(values[high_idx])
        scales.append(1.0 / (high - low + 1e-6))

    gains = RGBGainTriple(*scales).normalize_to_green()
    return gains.clamp(*config.gain_band)


def combined(image: np.ndarray, config: Optional[AlgorithmConfig] = None) -> RGBGainTriple:
    """Weighted blend of gray-world (0.4), white-point (0.3) and perfect-reflector (0.3)."""
    config = config or AlgorithmConfig()
    results = {
        algorithm: ESTIMATORS[algorithm](image, config)
        for algorithm in COMBINED_WEIGHTS
    }
    red = sum(results[a].red_gain * w for a, w in COMBINED_WEIGHTS.items())
    blue = sum(results[a].blue_gain * w for a, w in COMBINED_WEIGHTS.items())
    return RGBGainTriple(red, 1.0, blue).clamp(*config.gain_band)


def gains_from_balanced(original: np.ndarray, balanced: np.ndarray) -> RGBGainTriple:
    """Gains implied by a balanced copy: ratio of channel means, green-referenced.

    Raises:
        ValueError: if the two buffers differ in shape
    """
    original = validate_image(original)
    balanced = validate_image(balanced)
    if original.shape != balanced.shape:
        raise ValueError(f"Balanced image shape {balanced.shape} does not match original {original.shape}")

    orig_mean = [max(MIN_CHANNEL_MEAN, m) for m in cv2.mean(original)[:3]]
    bal_mean = [max(MIN_CHANNEL_MEAN, m) for m in cv2.mean(balanced)[:3]]
    gains = RGBGainTriple(*(b / o for b, o in zip(bal_mean, orig_mean))).normalize_to_green()
    return gains.clamp(0.2, 5.0)


def _to_bgr8(image: np.ndarray) -> np.ndarray:
    bgr = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
    return np.round(np.clip(bgr, 0.0, 1.0) * 255.0).astype(np.uint8)


def _from_bgr8(bgr8: np.ndarray) -> np.ndarray:
    return cv2.cvtColor(bgr8, cv2.COLOR_BGR2RGB).astype(np.float32) / 255.0


def _run_xphoto(name: str, image: np.ndarray, balance) -> RGBGainTriple:
    """Run an xphoto balancer and read gains off its output.

    A failing OpenCV call is logged and gives neutral gains.
    """
    image = validate_image(image)
    try:
        balanced = balance(image)
    except cv2.error as e:
        logger.error(f"OpenCV {name} white balance failed: {e}", exc_info=True)
        return RGBGainTriple(1.0, 1.0, 1.0)
    gains = gains_from_balanced(image, balanced)
    logger.info(f"OpenCV {name}: R={gains.red_gain:.3f}, B={gains.blue_gain:.3f}")
    return gains


def gray_world_opencv(image: np.ndarray, config: Optional[AlgorithmConfig] = None) -> RGBGainTriple:
    """OpenCV xphoto gray-world on an 8-bit copy of the image."""
    config = config or AlgorithmConfig()

    def balance(rgb):
        wb = cv2.xphoto.createGrayworldWB()
        wb.setSaturationThreshold(config.opencv_saturation_threshold)
        return _from_bgr8(wb.balanceWhite(_to_bgr8(rgb)))

    return _run_xphoto("gray-world", image, balance).clamp(*config.gain_band)


def simple_opencv(image: np.ndarray, config: Optional[AlgorithmConfig] = None) -> RGBGainTriple:
    """OpenCV xphoto simple WB, run directly on the float image."""
    config = config or AlgorithmConfig()

    def balance(rgb):
        wb = cv2.xphoto.createSimpleWB()
        wb.setInputMin(0.0)
        wb.setInputMax(1.0)
        wb.setOutputMin(0.0)
        wb.setOutputMax(1.0)
        wb.setP(config.opencv_simple_percentile)
        bgr = cv2.cvtColor(np.clip(rgb, 0.0, 1.0), cv2.COLOR_RGB2BGR)
        return cv2.cvtColor(wb.balanceWhite(bgr), cv2.COLOR_BGR2RGB)

    return _run_xphoto("simple", image, balance).clamp(*config.gain_band)


def learning_opencv(image: np.ndarray, config: Optional[AlgorithmConfig] = None) -> RGBGainTriple:
    """OpenCV xphoto learning-based WB with its built-in model."""
    config = config or AlgorithmConfig()

    def balance(rgb):
        wb = cv2.xphoto.createLearningBasedWB()
        wb.setHistBinNum(256)
        wb.setRangeMaxVal(255)
        wb.setSaturationThreshold(config.opencv_saturation_threshold)
        return _from_bgr8(wb.balanceWhite(_to_bgr8(rgb)))

    return _run_xphoto("learning-based", image, balance).clamp(*config.gain_band)


ESTIMATORS: Dict[Algorithm, Callable[..., RGBGainTriple]] = {
    Algorithm.GRAY_WORLD: gray_world,
    Algorithm.WHITE_POINT: white_point,
    Algorithm.PERFECT_REFLECTOR: perfect_reflector,
    Algorithm.SIMPLE: simple_white_balance,
    Algorithm.COMBINED: combined,
    Algorithm.GRAY_WORLD_OPENCV: gray_world_opencv,
    Algorithm.SIMPLE_OPENCV: simple_opencv,
    Algorithm.LEARNING_OPENCV: learning_opencv,
}


def get_estimator(algorithm: Union[str, Algorithm]) -> Callable[..., RGBGainTriple]:
    """Resolve an algorithm name to its estimator.

    Raises:
        ValueError: for an unknown algorithm name
    """
    try:
        return ESTIMATORS[Algorithm(algorithm)]
    except ValueError:
        raise ValueError(
            f"Unknown algorithm '{algorithm}', expected one of {[a.value for a in Algorithm]}"
        ) from None


def estimate_gains(
    image: np.ndarray,
    algorithm: Union[str, Algorithm] = Algorithm.COMBINED,
    config: Optional[AlgorithmConfig] = None,
) -> RGBGainTriple:
    """Run one named estimator on an image."""
    estimator = get_estimator(algorithm)
    gains = estimator(image, config or AlgorithmConfig())
    logger.info(
        f"{Algorithm(algorithm).value} gains: R={gains.red_gain:.3f}, "
        f"G={gains.green_gain:.3f}, B={gains.blue_gain:.3f}"
    )
    return gains
