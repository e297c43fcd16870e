"""FastAPI application for the raw white balance server."""
import asyncio
import functools
import json
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .color_science import Chromaticity
from .config import AlgorithmConfig, WhiteBalanceSettings
from .illuminants import (
    STANDARD_ILLUMINANTS,
    apply_duv_to_kelvin,
    describe_temperature,
    duv_to_ui_tint,
    estimate_temperature,
    standard_illuminant,
    ui_tint_to_duv,
    xy_to_kelvin,
)
from .imaging import decode_image, detect_format, encode_png_data_uri
from .pipeline import analyze_gains, balance_image
from .scene import CameraColorMetadata, inspect_white_point
from .schemas import (
    XY,
    BalanceResponse,
    BalanceResult,
    Gains,
    GainsResponse,
    HealthResponse,
    IlluminantInfo,
    JobStatus,
    KelvinRequest,
    TemperatureResponse,
    WhitePointRequest,
    WhitePointResponse,
    XYRequest,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Application state
app = FastAPI(
    title="Raw WB",
    description="White point estimation and white balance API for raw images",
    version="1.0.0"
)

# Rate limiting
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS - allow_origin_regex for Vercel wildcard subdomains
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_origin_regex=r"https://.*\.vercel\.app",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global state
_jobs: Dict[str, JobStatus] = {}
_job_finished_at: Dict[str, float] = {}
_executor: Optional[ThreadPoolExecutor] = None
_server_start_time: Optional[float] = None

MAX_IMAGE_SIZE_BYTES = 20 * 1024 * 1024  # 20MB, 16-bit TIFFs are large
UPLOAD_RATE_LIMIT = "10/minute"
JOB_RETENTION_SECONDS = 600  # finished jobs stay pollable this long


def _temperature_response(xy: Chromaticity, tint_scale: float = 1000.0) -> TemperatureResponse:
    estimate = estimate_temperature(xy)
    return TemperatureResponse(
        xy=XY(x=round(xy[0], 6), y=round(xy[1], 6)),
        kelvin=round(estimate.cct_kelvin, 1),
        duv=round(estimate.duv, 6),
        tint=round(duv_to_ui_tint(estimate.duv, tint_scale), 1),
        description=describe_temperature(estimate.cct_kelvin),
    )


def _report_temperature(section: dict) -> TemperatureResponse:
    """Response for one side of a white point report, tint already rounded."""
    xy = section["xy"]
    return TemperatureResponse(
        xy=XY(x=round(xy[0], 6), y=round(xy[1], 6)),
        kelvin=round(section["kelvin"], 1),
        duv=round(section["duv"], 6),
        tint=section["tint"],
        description=describe_temperature(section["kelvin"]),
    )


def _parse_json_field(raw: Optional[str], name: str):
    if raw is None or raw == "":
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"{name} must be valid JSON: {e}")


async def _read_upload(image: UploadFile) -> bytes:
    """Read an upload and check its size and magic bytes."""
    image_bytes = await image.read()

    # Validate size
    if len(image_bytes) > MAX_IMAGE_SIZE_BYTES:
        raise HTTPException(
            status_code=400,
            detail=f"Image size exceeds {MAX_IMAGE_SIZE_BYTES / 1024 / 1024:.1f}MB limit"
        )

    # Validate format
    if detect_format(image_bytes) is None:
        raise HTTPException(
            status_code=400,
            detail="Invalid image format. Only JPEG, PNG, TIFF and WebP are supported."
        )
    return image_bytes


def run_balance(
    image_bytes: bytes,
    linear: bool,
    metadata: Optional[CameraColorMetadata],
    settings: WhiteBalanceSettings,
) -> BalanceResult:
    """Decode, balance and encode one upload. Runs in the worker pool."""
    start = time.time()
    image = decode_image(image_bytes, linear=linear)
    balanced = balance_image(image, metadata, settings)
    data_uri = encode_png_data_uri(balanced.image)
    tint_scale = settings.algorithm_config.tint_scale

    gains = None
    if balanced.gains is not None:
        gains = Gains(
            red=round(balanced.gains.red_gain, 6),
            green=round(balanced.gains.green_gain, 6),
            blue=round(balanced.gains.blue_gain, 6),
        )

    return BalanceResult(
        method=balanced.method.value,
        status=balanced.status.value,
        source=_temperature_response(balanced.source_xy, tint_scale),
        target=_temperature_response(balanced.target_xy, tint_scale),
        gains=gains,
        processingTimeMs=int((time.time() - start) * 1000),
        image=data_uri,
    )


async def process_job(
    job_id: str,
    image_bytes: bytes,
    linear: bool,
    metadata: Optional[CameraColorMetadata],
    settings: WhiteBalanceSettings,
):
    """Background job processing function."""
    try:
        _jobs[job_id].progress = "balancing"
        _jobs[job_id].message = "Decoding image and applying white balance"

        result = await asyncio.get_event_loop().run_in_executor(
            _executor,
            functools.partial(run_balance, image_bytes, linear, metadata, settings),
        )

        # Mark completed
        _jobs[job_id].status = "completed"
        _jobs[job_id].result = result
        _jobs[job_id].progress = None
        _jobs[job_id].message = "White balance completed successfully"
        _job_finished_at[job_id] = time.time()

        logger.info(
            f"Job {job_id} completed: {result.source.kelvin:.0f}K -> {result.target.kelvin:.0f}K "
            f"in {result.processingTimeMs}ms"
        )

    except Exception as e:
        logger.error(f"Job {job_id} failed: {e}", exc_info=True)
        _jobs[job_id].status = "failed"
        _jobs[job_id].error = str(e)
        _jobs[job_id].message = f"White balance failed: {str(e)}"
        _job_finished_at[job_id] = time.time()


def prune_finished_jobs(now: float) -> int:
    """Drop jobs that finished more than JOB_RETENTION_SECONDS before now."""
    jobs_to_remove = [
        job_id for job_id, finished_at in _job_finished_at.items()
        if now - finished_at > JOB_RETENTION_SECONDS
    ]
    for job_id in jobs_to_remove:
        _jobs.pop(job_id, None)
        del _job_finished_at[job_id]
    return len(jobs_to_remove)


async def cleanup_old_jobs():
    """Periodic task to drop expired jobs."""
    while True:
        await asyncio.sleep(60)

        removed = prune_finished_jobs(time.time())
        if removed:
            logger.info(f"Cleaned up {removed} old jobs")


@app.on_event("startup")
async def startup_event():
    """Initialize server on startup."""
    global _executor, _server_start_time

    _server_start_time = time.time()
    _executor = ThreadPoolExecutor(max_workers=2)

    # Start cleanup task
    asyncio.create_task(cleanup_old_jobs())

    logger.info("Server started successfully")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    global _executor

    if _executor:
        _executor.shutdown(wait=True)
        _executor = None

    logger.info("Server shutdown complete")


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    uptime = time.time() - _server_start_time if _server_start_time else 0

    return HealthResponse(
        status="healthy",
        uptime_seconds=round(uptime, 1)
    )


@app.get("/illuminants", response_model=List[IlluminantInfo])
async def list_illuminants():
    """Standard illuminant white points."""
    return [
        IlluminantInfo(name=name, xy=XY(x=xy.x, y=xy.y), kelvin=round(xy_to_kelvin(xy), 1))
        for name, xy in STANDARD_ILLUMINANTS.items()
    ]


@app.post("/temperature/xy", response_model=TemperatureResponse)
async def temperature_from_xy(body: XYRequest):
    """CCT, Duv and UI tint of a chromaticity."""
    return _temperature_response(Chromaticity(body.x, body.y), body.tint_scale)


@app.post("/temperature/cct", response_model=TemperatureResponse)
async def temperature_from_cct(body: KelvinRequest):
    """Chromaticity of a locus temperature offset by Duv."""
    return _temperature_response(apply_duv_to_kelvin(body.kelvin, body.duv))


@app.post("/white-point", response_model=WhitePointResponse)
async def white_point(body: WhitePointRequest):
    """Scene white point from camera metadata, compared with a target."""
    try:
        if body.target_kelvin is not None:
            target = apply_duv_to_kelvin(body.target_kelvin, body.target_duv)
        else:
            target = standard_illuminant(body.target_illuminant)
        metadata = CameraColorMetadata(body.multipliers, body.camera_to_xyz)
        report = inspect_white_point(metadata, target, body.tint_scale)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    scene = _report_temperature(report["scene"])
    target_info = _report_temperature(report["target"])
    logger.info(
        f"White point: scene {scene.kelvin:.0f}K ({report['scene']['status'].value}), "
        f"target {target_info.kelvin:.0f}K"
    )
    return WhitePointResponse(
        status=report["scene"]["status"].value,
        scene=scene,
        target=target_info,
        delta_kelvin=round(report["delta"]["kelvin"], 1),
        delta_tint=report["delta"]["tint"],
    )


@app.post("/gains", response_model=GainsResponse)
@limiter.limit(UPLOAD_RATE_LIMIT)
async def estimate_image_gains(
    request: Request,
    image: UploadFile = File(...),
    algorithm: str = Form("combined"),
    linear: bool = Form(False),
):
    """Estimate white balance gains from image pixels."""
    image_bytes = await _read_upload(image)

    try:
        settings = WhiteBalanceSettings(source="auto", algorithm=algorithm)
        pixels = decode_image(image_bytes, linear=linear)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    analysis = await asyncio.get_event_loop().run_in_executor(
        _executor,
        functools.partial(analyze_gains, pixels, settings),
    )

    logger.info(f"Estimated {settings.algorithm.value} gains: {analysis.gains}")
    return GainsResponse(
        algorithm=settings.algorithm.value,
        gains=Gains(
            red=round(analysis.gains.red_gain, 6),
            green=round(analysis.gains.green_gain, 6),
            blue=round(analysis.gains.blue_gain, 6),
        ),
        illuminant=_temperature_response(analysis.illuminant_xy),
        image_mean=_temperature_response(analysis.image_xy),
    )


@app.post("/balance", response_model=BalanceResponse)
@limiter.limit(UPLOAD_RATE_LIMIT)
async def balance(
    request: Request,
    image: UploadFile = File(...),
    source: str = Form("camera"),
    method: str = Form("adaptation"),
    target_illuminant: str = Form("D65"),
    target_kelvin: Optional[float] = Form(None),
    target_tint: float = Form(0.0),
    cat_method: str = Form("bradford"),
    algorithm: str = Form("combined"),
    linear: bool = Form(False),
    multipliers: Optional[str] = Form(None),
    camera_to_xyz: Optional[str] = Form(None),
    tint_scale: float = Form(1000.0),
):
    """Submit an image for white balancing.

    multipliers and camera_to_xyz are JSON arrays. Returns job_id
    immediately. Check /status/{job_id} for results.
    """
    multiplier_values = _parse_json_field(multipliers, "multipliers")
    matrix_values = _parse_json_field(camera_to_xyz, "camera_to_xyz")

    try:
        config = AlgorithmConfig(tint_scale=tint_scale)
        settings = WhiteBalanceSettings(
            source=source,
            method=method,
            target_illuminant=target_illuminant,
            target_kelvin=target_kelvin,
            target_duv=ui_tint_to_duv(target_tint, config.tint_scale),
            cat_method=cat_method,
            algorithm=algorithm,
            algorithm_config=config,
        )
        if target_kelvin is None:
            standard_illuminant(target_illuminant)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    metadata = None
    if multiplier_values is not None:
        metadata = CameraColorMetadata(multiplier_values, matrix_values)

    image_bytes = await _read_upload(image)

    # Create job
    job_id = str(uuid.uuid4())
    _jobs[job_id] = JobStatus(
        status="processing",
        progress="queued",
        message="Job queued for processing"
    )

    # Start background processing
    asyncio.create_task(process_job(job_id, image_bytes, linear, metadata, settings))

    logger.info(
        f"Created job {job_id}: source={settings.source.value}, method={settings.method.value}"
    )

    return BalanceResponse(job_id=job_id)


@app.get("/status/{job_id}", response_model=JobStatus)
async def get_job_status(job_id: str):
    """Get job status and result."""
    if job_id not in _jobs:
        raise HTTPException(status_code=404, detail="Job not found")

    return _jobs[job_id]


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
