"""Algorithm thresholds and white balance settings.

Every estimator takes an AlgorithmConfig explicitly; nothing reads a
module-level threshold, so tests can vary any of them in isolation.
Out-of-range values are clamped rather than rejected.
"""
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator


class Algorithm(str, Enum):
    """Gain estimation algorithms, keyed by their public name."""
    GRAY_WORLD = "gray_world"
    WHITE_POINT = "white_point"
    PERFECT_REFLECTOR = "perfect_reflector"
    SIMPLE = "simple"
    COMBINED = "combined"
    GRAY_WORLD_OPENCV = "gray_world_opencv"
    SIMPLE_OPENCV = "simple_opencv"
    LEARNING_OPENCV = "learning_opencv"


class CATMethod(str, Enum):
    """Cone response matrix used by the chromatic adaptation transform."""
    BRADFORD = "bradford"
    CAT02 = "cat02"
    VON_KRIES = "von_kries"


class WhiteSource(str, Enum):
    """Where the scene white point comes from."""
    CAMERA = "camera"
    AUTO = "auto"


class CorrectionMethod(str, Enum):
    """How the correction is applied to the image."""
    ADAPTATION = "adaptation"
    GAINS = "gains"


class AlgorithmConfig(BaseModel):
    """Numeric thresholds shared by the gain estimators."""
    highlight_threshold: float = Field(0.98, description="Exclude pixels whose max channel is above this")
    shadow_threshold: float = Field(0.02, description="Exclude pixels whose min channel is below this")
    gray_world_saturation_max: float = Field(0.8, description="Gray-world ignores pixels more saturated than this")
    white_percentile: float = Field(0.95, description="Luminance percentile (fraction) for white-point candidates")
    white_saturation_max: float = Field(0.05, description="Max (max-min)/max for white-point candidates")
    patch_size: int = Field(32, description="Perfect-reflector patch size in pixels")
    reflectance_threshold: float = Field(0.9, description="Min patch luminance for perfect-reflector")
    gain_clamp_min: float = Field(0.2, description="Lower bound of the gain safety band")
    gain_clamp_max: float = Field(5.0, description="Upper bound of the gain safety band")
    simple_wb_percentile: float = Field(0.5, description="Symmetric percentile (percent) for simple WB")
    opencv_saturation_threshold: float = Field(0.98, description="Saturation threshold of the OpenCV gray-world and learning-based estimators")
    opencv_simple_percentile: float = Field(2.0, description="Percentile (percent) clipped by the OpenCV simple estimator")
    tint_scale: float = Field(1000.0, description="UI tint units per unit Duv")

    @field_validator(
        "white_percentile", "gray_world_saturation_max", "white_saturation_max", "opencv_saturation_threshold"
    )
    @classmethod
    def clamp_fraction(cls, v: float) -> float:
        return min(1.0, max(0.0, v))

    @field_validator("simple_wb_percentile", "opencv_simple_percentile")
    @classmethod
    def clamp_percent(cls, v: float) -> float:
        # Symmetric, so anything past 50% would invert the range
        return min(50.0, max(0.0, v))

    @field_validator("patch_size")
    @classmethod
    def clamp_patch_size(cls, v: int) -> int:
        return max(2, v)

    @field_validator("tint_scale")
    @classmethod
    def default_tint_scale(cls, v: float) -> float:
        return v if v > 1e-9 else 1000.0

    @model_validator(mode="after")
    def order_gain_band(self):
        low = max(1e-6, min(self.gain_clamp_min, self.gain_clamp_max))
        high = max(self.gain_clamp_min, self.gain_clamp_max, low)
        self.gain_clamp_min = low
        self.gain_clamp_max = high
        return self

    @property
    def gain_band(self) -> Tuple[float, float]:
        return self.gain_clamp_min, self.gain_clamp_max


class WhiteBalanceSettings(BaseModel):
    """What to balance from and to, and how."""
    source: WhiteSource = WhiteSource.CAMERA
    method: CorrectionMethod = CorrectionMethod.ADAPTATION
    target_illuminant: str = Field("D65", description="Standard illuminant used when no kelvin/xy target is set")
    target_kelvin: Optional[float] = Field(None, description="Target CCT in K (2000-12000 typical)")
    target_duv: float = Field(0.0, description="Duv offset for target_kelvin (positive = green)")
    target_xy: Optional[Tuple[float, float]] = Field(None, description="Explicit target chromaticity")
    cat_method: CATMethod = CATMethod.BRADFORD
    algorithm: Algorithm = Algorithm.COMBINED
    algorithm_config: AlgorithmConfig = Field(default_factory=AlgorithmConfig)
