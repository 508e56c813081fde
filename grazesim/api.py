"""
FastAPI application and endpoints for the grazing simulation engine
Includes CORS, request IDs, request size limits and structured error handling
"""

# Standard library imports
import asyncio
import traceback
from datetime import date
from typing import Any, Callable, Dict, Optional

# Third-party imports
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Local application imports
from grazesim.config import Settings, get_settings
from grazesim.estimator import estimate_current_state
from grazesim.exceptions import (
    DataSourceError,
    EvaluationError,
    InsufficientHistoryError,
    InsufficientWeatherCoverageError,
    ModelInvalidError,
    ModelNotFoundError,
    SimulationError,
    UnknownPaddockError,
)
from grazesim.loader import list_models, load_farm_data, load_model
from grazesim.models import (
    FarmData,
    OptimizationResult,
    OptimizeRequest,
    ProjectRequest,
    Projection,
    SimulationRequest,
    SimulationResponse,
    ValidationRequest,
    ValidationResponse,
)
from grazesim.optimization import recommend_rotation
from grazesim.planting import get_planting_recommendations
from grazesim.preprocessor import prepare_time_series
from grazesim.projection import project_forward
from grazesim.rotation import get_current_paddock, get_forage_status
from grazesim.simulation import simulate as run_simulation, summarize
from grazesim.utils.logging_config import (
    get_logger,
    set_request_id,
    setup_logging_from_settings,
)
from grazesim.utils.model_utils import with_params
from grazesim.validation import get_validation_summary, validate_model

logger = get_logger(__name__)

# Get configuration
settings = get_settings()

# Setup logging
setup_logging_from_settings(settings)

# Create FastAPI app
app = FastAPI(
    title="Grazing Simulation API",
    version="1.0.0",
    description="Forage, soil moisture and rotation planning on a stock-and-flow engine",
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Configuration constants (from settings)
MAX_REQUEST_SIZE = settings.max_request_size
SIMULATION_TIMEOUT = settings.simulation_timeout

# Status codes for structured errors; first match along the class hierarchy wins
ERROR_STATUS_CODES = {
    ModelInvalidError: status.HTTP_400_BAD_REQUEST,
    UnknownPaddockError: status.HTTP_404_NOT_FOUND,
    ModelNotFoundError: status.HTTP_404_NOT_FOUND,
    DataSourceError: status.HTTP_404_NOT_FOUND,
    InsufficientHistoryError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InsufficientWeatherCoverageError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


# ============================================================================
# Dependencies
# ============================================================================


def get_farm_data() -> FarmData:
    """Farm records for the estimator, optimizer and projector"""
    return load_farm_data(get_settings())


def get_today() -> date:
    """Reference day for estimates and plans"""
    return date.today()


# ============================================================================
# Middleware
# ============================================================================


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Middleware to add request ID to all requests"""
    request_id = request.headers.get("X-Request-ID")
    if not request_id:
        request_id = set_request_id()
    else:
        set_request_id(request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def request_size_middleware(request: Request, call_next):
    """Middleware to reject oversized request bodies"""
    content_length = request.headers.get("content-length")
    if content_length and int(content_length) > MAX_REQUEST_SIZE:
        size = int(content_length)
        logger.warning(f"Rejected request of {size} bytes")
        return JSONResponse(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            content={
                "code": "http_413",
                "message": f"Request size ({size} bytes) exceeds maximum ({MAX_REQUEST_SIZE} bytes)",
                "details": {"status_code": 413},
            },
        )
    return await call_next(request)


# ============================================================================
# Exception Handlers
# ============================================================================


def add_debug_info(error_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Add debug information (traceback) to error dict if DEBUG mode is enabled

    Args:
        error_dict: Error dictionary to add debug info to

    Returns:
        Modified error dictionary with debug info if enabled
    """
    if settings.debug and "traceback" not in error_dict.get("details", {}):
        error_dict.setdefault("details", {})["traceback"] = traceback.format_exc()
    return error_dict


def status_for_error(exc: SimulationError) -> int:
    """HTTP status for a structured simulation error"""
    for error_cls in type(exc).__mro__:
        if error_cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[error_cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(SimulationError)
async def simulation_error_handler(request: Request, exc: SimulationError):
    """Handle simulation errors with structured format"""
    status_code = status_for_error(exc)
    if status_code >= 500:
        logger.error(f"Simulation error: {exc.message}", extra={"code": exc.code})
    else:
        logger.warning(f"Request failed: {exc.message}", extra={"code": exc.code})
    return JSONResponse(status_code=status_code, content=add_debug_info(exc.to_dict()))


@app.exception_handler(EvaluationError)
async def evaluation_error_handler(request: Request, exc: EvaluationError):
    """Handle evaluation errors with structured format"""
    logger.error(f"Evaluation error: {exc.message}", extra={"code": exc.code})
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=add_debug_info(exc.to_dict()),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors with structured format"""
    logger.warning(f"Validation error: {exc.errors()}")

    error_messages = []
    for error in exc.errors():
        loc = " -> ".join(str(x) for x in error.get("loc", []))
        msg = error.get("msg", "Validation error")
        error_messages.append(f"{loc}: {msg}")

    error_response: Dict[str, Any] = {
        "code": "validation_error",
        "message": "; ".join(error_messages),
        "details": {
            "errors": [
                {k: v for k, v in error.items() if k in ("loc", "msg", "type")}
                for error in exc.errors()
            ],
        },
    }

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=add_debug_info(error_response),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with structured format"""
    logger.warning(f"HTTP exception: {exc.status_code} - {exc.detail}")

    error_response: Dict[str, Any] = {
        "code": f"http_{exc.status_code}",
        "message": exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        "details": {
            "status_code": exc.status_code,
        },
    }

    return JSONResponse(status_code=exc.status_code, content=add_debug_info(error_response))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions with structured format"""
    logger.exception("Unhandled exception", exc_info=exc)

    error_response: Dict[str, Any] = {
        "code": "internal_error",
        "message": str(exc) if settings.debug else "An internal error occurred",
        "details": {
            "exception_type": type(exc).__name__,
        },
    }

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=add_debug_info(error_response),
    )


async def run_with_timeout(label: str, func: Callable[..., Any], *args, **kwargs) -> Any:
    """
    Run CPU-bound work off the event loop, bounded by the configured timeout

    Raises:
        HTTPException: 408 if the work exceeds SIMULATION_TIMEOUT
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args, **kwargs),
            timeout=SIMULATION_TIMEOUT,
        )
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_408_REQUEST_TIMEOUT,
            detail=f"{label} exceeded timeout of {SIMULATION_TIMEOUT} seconds",
        )


# ============================================================================
# Endpoints
# ============================================================================


@app.get("/")
def read_root():
    """Root endpoint with API information"""
    logger.info("Root endpoint accessed")
    return {
        "message": "Grazing Simulation API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "models": "/models",
            "model": "/models/{name}",
            "validate": "/validate",
            "simulate": "/simulate",
            "weather": "/weather",
            "state": "/state",
            "optimize": "/optimize",
            "project": "/project",
            "planting": "/planting",
        },
    }


@app.get("/health")
def health_check():
    """Health check endpoint"""
    logger.debug("Health check requested")
    return {"status": "healthy"}


@app.get("/models")
def list_models_endpoint():
    """Names of the stored model definitions"""
    return {
        "models": list_models(settings.models_dir),
        "default": settings.default_model,
    }


@app.get("/models/{name}")
def get_model_endpoint(name: str):
    """Load a stored model definition by name"""
    # Security: Validate name to prevent path traversal
    if ".." in name or "/" in name or "\\" in name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid model name: path traversal not allowed",
        )

    model = load_model(name, settings.models_dir)
    return {
        "name": name,
        "model": model.model_dump(by_alias=True),
        "summary": {
            "stocks": len(model.stocks),
            "flows": len(model.flows),
            "params": len(model.params),
        },
    }


@app.post("/validate", response_model=ValidationResponse)
def validate_model_endpoint(request: ValidationRequest):
    """
    Validate a model without running simulation

    Returns structured validation results with errors and warnings.
    """
    logger.info(
        f"Validation request received: stocks={len(request.model.stocks)}, "
        f"flows={len(request.model.flows)}"
    )

    result = validate_model(request.model, request.time_series_keys)

    summary = None
    if result.valid:
        summary = {
            "stocks": len(request.model.stocks),
            "flows": len(request.model.flows),
            "params": len(request.model.params),
        }
        logger.info(f"Validation passed: {summary}")
    else:
        logger.warning(f"Validation failed: {len(result.errors)} errors found")
        summary = dict(get_validation_summary(result))

    return ValidationResponse(
        valid=result.valid,
        errors=result.errors,
        warnings=result.warnings,
        summary=summary,
    )


@app.post("/simulate", response_model=SimulationResponse)
async def simulate(request: SimulationRequest):
    """
    Run a stock-and-flow simulation

    Uses the inline model if given, else the named (or default) stored model.
    Parameter overrides are applied to a clone before the run.
    """
    if request.model is not None:
        model = request.model
    else:
        model = load_model(request.model_name or settings.default_model, settings.models_dir)

    if request.params:
        model = with_params(model, request.params)

    logger.info(
        f"Simulation request received: model='{model.name}', steps={request.steps}, "
        f"dt={request.dt}, time_series={sorted(request.time_series)}"
    )

    results = await run_with_timeout(
        "Simulation",
        run_simulation,
        model,
        steps=request.steps,
        dt=request.dt,
        time_series_params=request.time_series,
        verbose=request.verbose,
    )

    logger.info(f"Simulation completed: {len(results.time)} time points")

    return SimulationResponse(
        success=True,
        time=results.time,
        stocks=results.stocks,
        flows=results.flows,
        warnings=results.warnings,
        summary=dict(summarize(results)),
    )


@app.get("/weather")
def weather_endpoint(
    start: Optional[date] = Query(None, description="First day (defaults to the last `days` archived)"),
    days: int = Query(30, gt=0, le=366),
    data: FarmData = Depends(get_farm_data),
):
    """Preprocessed growth drivers for a date range"""
    archive = data.weather
    if start is None:
        start_idx = max(len(archive) - days, 0)
    else:
        start_idx = archive.index_of(start)
        if start_idx is None:
            raise InsufficientWeatherCoverageError(
                f"Start date {start.isoformat()} not found in weather archive",
                details={"start_date": start.isoformat()},
            )
    return prepare_time_series(
        archive.slice(start_idx, start_idx + days),
        default_et=settings.default_et,
        window=settings.moisture_window,
    )


@app.get("/state")
async def state_endpoint(
    include_results: bool = Query(False),
    data: FarmData = Depends(get_farm_data),
    today: date = Depends(get_today),
):
    """Current state estimate with forage status per paddock"""
    estimate = await run_with_timeout(
        "State estimation",
        estimate_current_state,
        data.model,
        data.weather,
        data.history,
        data.planting,
        data.farm,
        historical_days=settings.historical_days,
        today=today,
        correction_factor=settings.forage_correction_factor,
        default_et=settings.default_et,
    )

    paddocks = {}
    for key, paddock in data.farm.paddocks.items():
        forage = estimate.final_state.get(f"{key}_forage")
        paddocks[key] = {
            "name": paddock.name,
            "forage": forage,
            "moisture": estimate.final_state.get(f"{key}_moisture"),
            "som": estimate.final_state.get(f"{key}_som"),
            "status": get_forage_status(forage, data.farm.thresholds) if forage is not None else None,
        }

    response: Dict[str, Any] = {
        "start_date": estimate.start_date,
        "end_date": estimate.end_date,
        "estimated_at": estimate.estimated_at.isoformat(),
        "current_paddock": get_current_paddock(data.history, today),
        "final_state": estimate.final_state,
        "paddocks": paddocks,
    }
    if include_results:
        response["dates"] = estimate.dates
        response["results"] = estimate.results.model_dump()
    return response


@app.post("/optimize", response_model=OptimizationResult)
async def optimize_endpoint(
    request: OptimizeRequest,
    data: FarmData = Depends(get_farm_data),
    today: date = Depends(get_today),
):
    """Rank candidate rotation sequences from the estimated state"""
    logger.info(f"Optimization request received: {request.model_dump(exclude_none=True)}")
    return await run_with_timeout(
        "Optimization",
        recommend_rotation,
        data,
        settings,
        today,
        moves_ahead=request.moves_ahead,
        days_per_rotation=request.days_per_rotation,
        min_rest_days=request.min_rest_days,
        include_results=request.include_results,
    )


def _estimate_and_project(
    data: FarmData, today: date, request: ProjectRequest, config: Settings
) -> Projection:
    estimate = estimate_current_state(
        data.model,
        data.weather,
        data.history,
        data.planting,
        data.farm,
        historical_days=config.historical_days,
        today=today,
        correction_factor=config.forage_correction_factor,
        default_et=config.default_et,
    )
    return project_forward(
        data.model,
        estimate,
        data.weather,
        data.history,
        data.planting,
        data.farm,
        paddock=request.paddock,
        days=request.days or config.projection_days,
        hay_factor=config.hay_supplement_factor if request.hay_factor is None else request.hay_factor,
        today=today,
        days_per_rotation=config.days_per_rotation,
        default_et=config.default_et,
    )


@app.post("/project", response_model=Projection)
async def project_endpoint(
    request: ProjectRequest,
    data: FarmData = Depends(get_farm_data),
    today: date = Depends(get_today),
):
    """Three grazing scenarios for a focus paddock"""
    logger.info(f"Projection request received: {request.model_dump(exclude_none=True)}")
    if request.paddock is not None:
        data.farm.get_paddock(request.paddock)
    return await run_with_timeout(
        "Projection", _estimate_and_project, data, today, request, settings
    )


@app.get("/planting")
def planting_endpoint(
    season: str = Query("next", pattern="^(cool|warm|next)$"),
    data: FarmData = Depends(get_farm_data),
    today: date = Depends(get_today),
):
    """Planting windows, candidate-date scenarios and transition gaps"""
    return get_planting_recommendations(
        data.weather, data.planting, data.farm, season=season, today=today
    )
