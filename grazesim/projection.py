"""
Scenario projection
Runs the model forward from the estimated state under three grazing policies
that share the same starting state and weather:

A. Move off the focus paddock now and rest it for the whole horizon
B. Finish the current rotation with hay supplement, then cycle the others
C. Same schedule as B without hay
"""

from datetime import date
from typing import Iterable, List, Optional, Sequence
import logging

from grazesim.constants import DEFAULT_ET, PROJECTION_MILESTONES
from grazesim.estimator import extend_weather_time_series, extract_final_state
from grazesim.exceptions import UnknownPaddockError
from grazesim.models import (
    FarmConfig,
    Model,
    PlantingSchedule,
    Projection,
    RotationHistory,
    ScenarioResult,
    StateEstimate,
    WeatherArchive,
)
from grazesim.rotation import get_current_paddock
from grazesim.simulation import simulate
from grazesim.utils.model_utils import prepare_run_model

logger = logging.getLogger(__name__)


def build_rotation_schedule(
    farm: FarmConfig,
    start_paddock: str,
    remaining_days: int,
    total_days: int,
    exclude_paddocks: Iterable[str] = (),
    days_per_rotation: int = 14,
) -> List[float]:
    """
    Per-day paddock id array for a "finish, then cycle" policy

    The herd stays on start_paddock for remaining_days, then cycles through
    every configured paddock not excluded, in configuration order, for
    days_per_rotation days each. With every paddock excluded the herd stays
    on start_paddock.

    Raises:
        UnknownPaddockError: If start_paddock is not configured
        ValueError: If days_per_rotation is not positive
    """
    if days_per_rotation <= 0:
        raise ValueError(f"days_per_rotation must be positive, got {days_per_rotation}")
    start_id = float(farm.get_paddock(start_paddock).id)
    excluded = set(exclude_paddocks)

    schedule: List[float] = [start_id] * min(max(remaining_days, 0), total_days)
    cycle = [float(p.id) for key, p in farm.paddocks.items() if key not in excluded]

    if not cycle:
        schedule.extend([start_id] * (total_days - len(schedule)))
        return schedule

    i = 0
    while len(schedule) < total_days:
        schedule.extend([cycle[i % len(cycle)]] * days_per_rotation)
        i += 1
    return schedule[:total_days]


def _first_reaching(series: Sequence[float], threshold: float) -> Optional[int]:
    for i, value in enumerate(series):
        if value >= threshold:
            return i
    return None


def project_forward(
    model: Model,
    estimate: StateEstimate,
    archive: WeatherArchive,
    history: RotationHistory,
    planting: PlantingSchedule,
    farm: FarmConfig,
    paddock: Optional[str] = None,
    days: int = 90,
    hay_factor: float = 0.4,
    today: Optional[date] = None,
    days_per_rotation: int = 14,
    default_et: float = DEFAULT_ET,
) -> Projection:
    """
    Compare three grazing policies for a focus paddock

    Args:
        model: Canonical model (not mutated)
        estimate: Current state estimate (starting state for every scenario)
        archive: Daily weather archive; extended with prior-year proxy
        history: Rotation history (current paddock and days on it)
        planting: Planting schedule for lifecycle arrays
        farm: Farm configuration
        paddock: Focus paddock key (defaults to the current paddock)
        days: Horizon in days
        hay_factor: Fraction of intake replaced by hay in scenario B
        today: First projected day (defaults to the estimate's end date)
        days_per_rotation: Nominal stint length
        default_et: ET substitute for missing weather values

    Returns:
        Projection with scenarios A, B and C

    Raises:
        UnknownPaddockError: If the focus paddock is not configured or the
            model has no forage stock for it
        InsufficientWeatherCoverageError: If the horizon cannot be covered
    """
    today = today or date.fromisoformat(estimate.end_date)
    current = get_current_paddock(history, today)
    focus = paddock or current["id"]
    focus_name = farm.get_paddock(focus).name

    forage_stock = f"{focus}_forage"
    moisture_stock = f"{focus}_moisture"
    if forage_stock not in model.stocks:
        raise UnknownPaddockError(
            focus, [k for k in farm.paddock_keys if f"{k}_forage" in model.stocks]
        )

    remaining_days = max(0, days_per_rotation - current["days_since"])
    time_series, coverage = extend_weather_time_series(
        archive, today, days, planting, farm, default_et
    )

    schedule_a = build_rotation_schedule(
        farm, focus, 0, days, exclude_paddocks=[focus], days_per_rotation=days_per_rotation
    )
    schedule_bc = build_rotation_schedule(
        farm, focus, remaining_days, days, exclude_paddocks=[focus], days_per_rotation=days_per_rotation
    )

    scenario_defs = [
        (f"A. Move off now, rest {focus_name} immediately", schedule_a, 0.0),
        (f"B. Finish rotation ({remaining_days}d) + hay, then cycle", schedule_bc, hay_factor),
        (f"C. Finish rotation ({remaining_days}d) no hay, then cycle", schedule_bc, 0.0),
    ]

    logger.info(
        f"Projecting {days}d for {focus_name} ({remaining_days}d left on current rotation, "
        f"hay factor {hay_factor})"
    )

    scenarios: List[ScenarioResult] = []
    for name, schedule, scenario_hay in scenario_defs:
        run_model = prepare_run_model(
            model, estimate.final_state, {"hay_supplement_factor": scenario_hay}
        )
        results = simulate(
            run_model,
            steps=days,
            dt=1.0,
            time_series_params={**time_series, "current_paddock": schedule},
        )

        forage = results.stocks[forage_stock]
        scenarios.append(
            ScenarioResult(
                name=name,
                hay_factor=scenario_hay,
                schedule=schedule,
                forage=forage,
                moisture=results.stocks.get(moisture_stock, []),
                start_forage=forage[0],
                end_forage=forage[-1],
                min_forage=min(forage),
                max_forage=max(forage),
                milestones={
                    f"days_to_{threshold}": _first_reaching(forage, threshold)
                    for threshold in PROJECTION_MILESTONES
                },
                end_state=extract_final_state(results),
            )
        )
        logger.debug(f"{name}: {forage[0]:.0f} -> {forage[-1]:.0f} lb/acre")

    return Projection(
        focus_paddock=focus,
        focus_name=focus_name,
        days=days,
        current_paddock=current["id"],
        remaining_days=remaining_days,
        starting_state=estimate.final_state,
        weather=coverage,
        scenarios=scenarios,
    )
