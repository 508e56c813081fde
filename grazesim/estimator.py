"""
State estimation by historical replay
Forage mass, soil moisture and organic matter cannot be observed directly, so the
current state is reconstructed by running the model forward over a recent
window of real weather and real grazing history and reading the final stock
values.
"""

from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple, Union
import logging

from grazesim.config import get_settings
from grazesim.constants import COOL_SEASON_KEY, DEFAULT_ET
from grazesim.exceptions import InsufficientHistoryError, InsufficientWeatherCoverageError
from grazesim.models import (
    FarmConfig,
    Model,
    PlantingSchedule,
    RotationHistory,
    SimulationResults,
    StateEstimate,
    WeatherArchive,
    WeatherCoverage,
)
from grazesim.planting import get_planting_dates, seeding_in_effect
from grazesim.preprocessor import (
    cool_season_lifecycle,
    preprocess_weather,
    proxy_date,
)
from grazesim.simulation import simulate
from grazesim.utils.model_utils import scale_initials

logger = logging.getLogger(__name__)

DateLike = Union[str, date]


def _as_date(value: DateLike) -> date:
    return date.fromisoformat(value) if isinstance(value, str) else value


# ============================================================================
# Occupancy Schedule
# ============================================================================


def build_historical_paddock_schedule(
    history: RotationHistory,
    start_date: DateLike,
    days: int,
    farm: FarmConfig,
) -> List[float]:
    """
    Numeric id of the paddock the herd occupied on each day of a window

    Rotations are applied in record order, so on a move day the later
    rotation wins. An open rotation runs to the end of the window. Days no
    rotation covers fall back to the current paddock.

    Args:
        history: Rotation history
        start_date: First day of the window
        days: Window length
        farm: Farm configuration (paddock key -> numeric id)

    Returns:
        One paddock id per day

    Raises:
        UnknownPaddockError: If the history names a paddock the farm does not have
    """
    start = _as_date(start_date)
    window_end = start + timedelta(days=days - 1)

    occupancy: Dict[date, int] = {}
    for rotation in history.rotations:
        paddock_id = farm.get_paddock(rotation.paddock).id
        rot_end = rotation.end or window_end
        day = max(rotation.start, start)
        while day <= min(rot_end, window_end):
            occupancy[day] = paddock_id
            day += timedelta(days=1)

    default_id = farm.get_paddock(history.current_paddock.id).id
    return [
        float(occupancy.get(start + timedelta(days=i), default_id)) for i in range(days)
    ]


# ============================================================================
# Weather Time Series
# ============================================================================


def _lifecycle_series(
    planting: PlantingSchedule, farm: FarmConfig, start: date, steps: int
) -> Dict[str, List[float]]:
    """
    Cool-season lifecycle array per paddock, measured from the true planting date

    Each day is aged from the seeding in effect on that day, so a later
    planned seeding does not reset a crop that is already standing, and a
    reseeding inside the window restarts the curve from its own date.
    Paddocks without a planting record get no series, leaving the model's
    static '{key}_lifecycle' parameter in effect.
    """
    lifecycles: Dict[str, List[float]] = {}
    for key in farm.paddock_keys:
        seedings = get_planting_dates(planting, key, COOL_SEASON_KEY)
        if not seedings:
            logger.debug(f"No cool-season planting date for '{key}'; using static lifecycle")
            continue
        series = []
        for step in range(steps):
            day = start + timedelta(days=step)
            series.append(cool_season_lifecycle((day - seeding_in_effect(seedings, day)).days))
        lifecycles[f"{key}_lifecycle"] = series
    return lifecycles


def build_weather_time_series(
    archive: WeatherArchive,
    start_date: DateLike,
    steps: int,
    planting: PlantingSchedule,
    farm: FarmConfig,
    default_et: float = DEFAULT_ET,
) -> Dict[str, List[float]]:
    """
    Time-series parameters from archived weather

    Args:
        archive: Daily weather archive
        start_date: Day that becomes step 0
        steps: Number of steps
        planting: Planting schedule for lifecycle arrays
        farm: Farm configuration
        default_et: ET substitute for missing values

    Returns:
        cool_temp_mult, daily_precip, daily_et and '{key}_lifecycle' arrays.
        Weather arrays are shorter than `steps` when the archive ends early.

    Raises:
        InsufficientWeatherCoverageError: If start_date is not in the archive
    """
    start = _as_date(start_date)
    start_idx = archive.index_of(start)
    if start_idx is None:
        raise InsufficientWeatherCoverageError(
            f"Start date {start.isoformat()} not found in weather archive",
            details={
                "start_date": start.isoformat(),
                "archive_start": archive.time[0] if archive.time else None,
                "archive_end": archive.time[-1] if archive.time else None,
            },
        )

    processed = preprocess_weather(archive.slice(start_idx, start_idx + steps), default_et)
    if len(processed["dates"]) < steps:
        logger.debug(
            f"Weather archive covers {len(processed['dates'])} of {steps} days "
            f"from {start.isoformat()}"
        )

    return {
        "cool_temp_mult": processed["cool_temp_mult"],
        "daily_precip": processed["precip"],
        "daily_et": processed["et"],
        **_lifecycle_series(planting, farm, start, steps),
    }


def extend_weather_time_series(
    archive: WeatherArchive,
    start_date: DateLike,
    steps: int,
    planting: PlantingSchedule,
    farm: FarmConfig,
    default_et: float = DEFAULT_ET,
) -> Tuple[Dict[str, List[float]], WeatherCoverage]:
    """
    Time-series parameters for a horizon that may run past the archive

    Days with real (historical or forecast) weather use it. Days beyond use
    the same calendar day one year earlier as a climatological proxy.
    Lifecycle arrays always count true elapsed days from the planting date,
    so a crop never looks unplanted after the proxy boundary.

    Returns:
        (time-series parameters, weather coverage report)

    Raises:
        InsufficientWeatherCoverageError: If a day has neither real nor proxy weather
    """
    start = _as_date(start_date)
    rows: List[int] = []
    real_days = 0

    for i in range(steps):
        day = start + timedelta(days=i)
        idx = archive.index_of(day)
        if idx is not None:
            real_days += 1
        else:
            proxy = proxy_date(day)
            idx = archive.index_of(proxy)
            if idx is None:
                raise InsufficientWeatherCoverageError(
                    f"No weather for {day.isoformat()} and no proxy day {proxy.isoformat()}",
                    details={
                        "date": day.isoformat(),
                        "proxy_date": proxy.isoformat(),
                        "start_date": start.isoformat(),
                        "days": steps,
                    },
                )
        rows.append(idx)

    extended = WeatherArchive(
        time=[(start + timedelta(days=i)).isoformat() for i in range(steps)],
        precipitation_sum=[archive.precipitation_sum[r] for r in rows],
        temperature_2m_max=[archive.temperature_2m_max[r] for r in rows],
        temperature_2m_min=[archive.temperature_2m_min[r] for r in rows],
        et0_fao_evapotranspiration=[archive.et0_fao_evapotranspiration[r] for r in rows],
    )
    processed = preprocess_weather(extended, default_et)

    start_idx = archive.index_of(start)
    coverage = WeatherCoverage(
        start_date=start.isoformat(),
        days=steps,
        available_days=len(archive) - start_idx if start_idx is not None else 0,
        forecast_days=real_days,
        proxy_days=steps - real_days,
    )
    if coverage.proxy_days:
        logger.info(
            f"Weather horizon {steps}d from {start.isoformat()}: "
            f"{coverage.forecast_days}d real, {coverage.proxy_days}d prior-year proxy"
        )

    series = {
        "cool_temp_mult": processed["cool_temp_mult"],
        "daily_precip": processed["precip"],
        "daily_et": processed["et"],
        **_lifecycle_series(planting, farm, start, steps),
    }
    return series, coverage


# ============================================================================
# Estimation
# ============================================================================


def extract_final_state(results: SimulationResults) -> Dict[str, float]:
    """Final value of every stock, usable as initial conditions"""
    return {name: values[-1] for name, values in results.stocks.items() if values}


def estimate_current_state(
    model: Model,
    archive: WeatherArchive,
    history: RotationHistory,
    planting: PlantingSchedule,
    farm: FarmConfig,
    historical_days: int = 60,
    today: Optional[DateLike] = None,
    correction_factor: Optional[float] = None,
    default_et: Optional[float] = None,
) -> StateEstimate:
    """
    Reconstruct today's stock values by replaying recent history

    The model's forage initials describe a different reference date than
    "historical_days ago", so they are scaled by a correction factor first.
    The factor is a calibration parameter (Settings.forage_correction_factor).

    Args:
        model: Canonical model (not mutated)
        archive: Daily weather archive covering the window
        history: Rotation history
        planting: Planting schedule
        farm: Farm configuration
        historical_days: Length of the replay window
        today: Day the estimate applies to (defaults to the current date)
        correction_factor: Forage initial multiplier (defaults to settings)
        default_et: ET substitute (defaults to settings)

    Returns:
        StateEstimate with the final state and the full replay

    Raises:
        InsufficientHistoryError: If the archive does not hold `today` and the
            `historical_days` before it
    """
    settings = get_settings()
    factor = settings.forage_correction_factor if correction_factor is None else correction_factor
    et = settings.default_et if default_et is None else default_et
    end = _as_date(today) if today is not None else date.today()

    today_idx = archive.index_of(end)
    if today_idx is None or today_idx < historical_days:
        raise InsufficientHistoryError(
            f"Weather archive doesn't cover {historical_days} days of history before "
            f"{end.isoformat()}",
            details={
                "today": end.isoformat(),
                "historical_days": historical_days,
                "archive_start": archive.time[0] if archive.time else None,
                "archive_end": archive.time[-1] if archive.time else None,
            },
        )

    start = end - timedelta(days=historical_days)
    start_idx = today_idx - historical_days

    time_series = build_weather_time_series(
        archive, start, historical_days, planting, farm, et
    )
    time_series["current_paddock"] = build_historical_paddock_schedule(
        history, start, historical_days, farm
    )

    historical_model = scale_initials(model, "_forage", factor)

    logger.info(
        f"Estimating state for {end.isoformat()} from {historical_days}d replay "
        f"starting {start.isoformat()} (forage correction x{factor})"
    )
    results = simulate(
        historical_model,
        steps=historical_days,
        dt=1.0,
        time_series_params=time_series,
    )

    return StateEstimate(
        final_state=extract_final_state(results),
        dates=archive.time[start_idx:today_idx + 1],
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        estimated_at=datetime.now(),
        results=results,
    )
