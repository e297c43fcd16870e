"""Pydantic models for request/response schemas."""
from pydantic import BaseModel, Field
from typing import Optional, List, Literal


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    uptime_seconds: float


class XY(BaseModel):
    """CIE 1931 xy chromaticity."""
    x: float = Field(..., description="x chromaticity coordinate")
    y: float = Field(..., description="y chromaticity coordinate")


class IlluminantInfo(BaseModel):
    """Standard illuminant white point."""
    name: str
    xy: XY
    kelvin: float


class KelvinRequest(BaseModel):
    """Locus point for a temperature, optionally offset by Duv."""
    kelvin: float = Field(..., description="Correlated color temperature in K")
    duv: float = Field(0.0, description="Offset from the locus (positive = green)")


class XYRequest(BaseModel):
    """Chromaticity to characterize."""
    x: float
    y: float
    tint_scale: float = Field(1000.0, description="UI tint units per unit Duv")


class TemperatureResponse(BaseModel):
    """CCT, Duv and presentation values for a chromaticity."""
    xy: XY
    kelvin: float
    duv: float = Field(..., description="Signed Duv (positive = green, negative = magenta)")
    tint: float = Field(..., description="UI tint (positive = magenta), linear approximation")
    description: str


class WhitePointRequest(BaseModel):
    """Camera metadata plus the desired target white point."""
    multipliers: List[float] = Field(..., description="Camera WB multipliers (R, G1, B, G2)")
    camera_to_xyz: Optional[List[List[float]]] = Field(
        None, description="Camera-to-XYZ matrix, 3 or 4 rows of 3"
    )
    target_illuminant: str = "D65"
    target_kelvin: Optional[float] = None
    target_duv: float = 0.0
    tint_scale: float = 1000.0


class WhitePointResponse(BaseModel):
    """Scene vs target white point."""
    status: Literal["estimated", "locus_fallback", "no_calibration"]
    scene: TemperatureResponse
    target: TemperatureResponse
    delta_kelvin: float
    delta_tint: float


class Gains(BaseModel):
    """RGB gain triple."""
    red: float
    green: float
    blue: float


class GainsResponse(BaseModel):
    """Gains estimated from pixel statistics."""
    algorithm: str
    gains: Gains
    illuminant: TemperatureResponse
    image_mean: TemperatureResponse


class BalanceResponse(BaseModel):
    """Immediate response after submitting a balance job."""
    job_id: str


class BalanceResult(BaseModel):
    """Completed balance job."""
    method: str
    status: str
    source: TemperatureResponse
    target: TemperatureResponse
    gains: Optional[Gains] = None
    processingTimeMs: int
    image: str = Field(..., description="Base64 data URI string (data:image/png;base64,...)")


class JobStatus(BaseModel):
    """Job status and result."""
    status: Literal["processing", "completed", "failed"]
    progress: Optional[str] = None
    result: Optional[BalanceResult] = None
    error: Optional[str] = None
    message: Optional[str] = None
