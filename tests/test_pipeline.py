"""Tests for settings and the end-to-end balance pipeline."""
import numpy as np
import pytest
from rawwb.color_science import SRGB_TO_XYZ
from rawwb.config import AlgorithmConfig, CorrectionMethod, WhiteBalanceSettings, WhiteSource
from rawwb.illuminants import STANDARD_ILLUMINANTS, kelvin_to_xy
from rawwb.pipeline import (
    SRGB_WHITE_XY,
    analyze_gains,
    balance_image,
    image_temperature,
    resolve_target,
)
from rawwb.scene import CameraColorMetadata, WhitePointStatus

SRGB_LIKE_CAMERA = SRGB_TO_XYZ.T.tolist()


def warm_scene():
    rng = np.random.default_rng(4)
    image = rng.uniform(0.3, 0.6, (64, 64, 3)).astype(np.float32)
    return image * np.array([1.0, 0.75, 0.5], dtype=np.float32)


class TestAlgorithmConfig:
    """Test threshold validation."""

    def test_defaults(self):
        """Defaults match the documented thresholds."""
        config = AlgorithmConfig()
        assert config.highlight_threshold == 0.98
        assert config.shadow_threshold == 0.02
        assert config.patch_size == 32
        assert config.gain_band == (0.2, 5.0)

    def test_percentile_clamped(self):
        """Out-of-range percentiles are clamped, not rejected."""
        config = AlgorithmConfig(white_percentile=1.5, simple_wb_percentile=80.0)
        assert config.white_percentile == 1.0
        assert config.simple_wb_percentile == 50.0

    def test_gain_band_ordered(self):
        """A reversed band is put back in order."""
        config = AlgorithmConfig(gain_clamp_min=4.0, gain_clamp_max=0.5)
        assert config.gain_band == (0.5, 4.0)

    def test_tint_scale_fallback(self):
        """A zero tint scale falls back to 1000."""
        assert AlgorithmConfig(tint_scale=0.0).tint_scale == 1000.0

    def test_unknown_algorithm_rejected(self):
        """Enum fields reject unknown names."""
        with pytest.raises(ValueError):
            WhiteBalanceSettings(algorithm="retinex")


class TestResolveTarget:
    """Test target white point selection."""

    def test_default_is_d65(self):
        """Without a target the named illuminant (D65) is used."""
        assert resolve_target(WhiteBalanceSettings()) == STANDARD_ILLUMINANTS["D65"]

    def test_kelvin_wins_over_illuminant(self):
        """An explicit temperature overrides the illuminant."""
        settings = WhiteBalanceSettings(target_kelvin=3200, target_illuminant="D50")
        assert resolve_target(settings) == kelvin_to_xy(3200)

    def test_xy_wins_over_kelvin(self):
        """An explicit xy overrides everything."""
        settings = WhiteBalanceSettings(target_kelvin=3200, target_xy=(0.3, 0.31))
        assert resolve_target(settings) == (0.3, 0.31)

    def test_unknown_illuminant(self):
        """Unknown illuminant names raise ValueError."""
        with pytest.raises(ValueError):
            resolve_target(WhiteBalanceSettings(target_illuminant="F11"))


class TestBalanceImage:
    """Test end-to-end white balancing."""

    def test_camera_adaptation(self):
        """Camera metadata drives a CAT to D65."""
        image = warm_scene()
        metadata = CameraColorMetadata([2.0, 1.0, 1.5, 1.0], SRGB_LIKE_CAMERA)
        result = balance_image(image, metadata, WhiteBalanceSettings())
        assert result.status == WhitePointStatus.ESTIMATED
        assert result.method == CorrectionMethod.ADAPTATION
        assert result.gains is None
        assert result.image.shape == image.shape
        assert np.all(np.isfinite(result.image))
        assert 2500 <= result.source_estimate.cct_kelvin <= 7500

    def test_same_white_is_identity(self):
        """Balancing from D65 to D65 leaves the image unchanged."""
        image = warm_scene()
        settings = WhiteBalanceSettings(target_xy=tuple(SRGB_WHITE_XY))
        metadata = CameraColorMetadata([1.0, 1.0, 1.0, 1.0], SRGB_LIKE_CAMERA)
        result = balance_image(image, metadata, settings)
        assert np.max(np.abs(result.image - image)) < 1e-6

    def test_missing_metadata_falls_back(self):
        """A camera source without metadata estimates from pixels."""
        result = balance_image(warm_scene(), None, WhiteBalanceSettings())
        assert result.status == WhitePointStatus.PIXEL_ESTIMATE

    def test_uncalibrated_metadata_falls_back(self):
        """A camera source with a zero matrix estimates from pixels."""
        metadata = CameraColorMetadata([2.0, 1.0, 1.5, 1.0], np.zeros((4, 3)).tolist())
        result = balance_image(warm_scene(), metadata, WhiteBalanceSettings())
        assert result.status == WhitePointStatus.PIXEL_ESTIMATE

    def test_auto_gains_neutralize(self):
        """Gray-world gains to D65 bring the channel means together."""
        image = warm_scene()
        settings = WhiteBalanceSettings(
            source=WhiteSource.AUTO,
            method=CorrectionMethod.GAINS,
            algorithm="gray_world",
        )
        result = balance_image(image, None, settings)
        means = result.image.reshape(-1, 3).mean(axis=0)
        assert result.gains is not None
        assert np.allclose(means, means[1], rtol=1e-3)

    def test_input_untouched(self):
        """The caller's buffer is not modified."""
        image = warm_scene()
        before = image.copy()
        balance_image(image, None, WhiteBalanceSettings(source="auto", method="gains"))
        assert np.array_equal(image, before)

    def test_wrong_shape(self):
        """Non (H, W, 3) input raises ValueError."""
        with pytest.raises(ValueError):
            balance_image(np.zeros((4, 4)))


class TestAnalysis:
    """Test gain and temperature analysis."""

    def test_analyze_gains(self):
        """A warm cast reads as a warm illuminant."""
        analysis = analyze_gains(warm_scene(), WhiteBalanceSettings(algorithm="gray_world"))
        assert analysis.gains.green_gain == 1.0
        assert analysis.illuminant_estimate.cct_kelvin < 5000
        assert analysis.image_estimate.cct_kelvin < 5000

    def test_neutral_image_temperature(self):
        """A gray image reads as the sRGB white, about 6500 K."""
        image = np.full((8, 8, 3), 0.4, dtype=np.float32)
        assert abs(image_temperature(image).cct_kelvin - 6504) < 30
