"""
Rotation optimization engine for grazing plans
Enumerates candidate paddock sequences, simulates each from the estimated state
and ranks them lexicographically

The search space is small by construction (at most (P-1) x (P-1) candidates
for P paddocks), so every candidate is simulated; there is no pruning.
"""

from datetime import date
from typing import Dict, List, Mapping, Optional, Sequence
import logging
import math
import time

from grazesim.config import Settings, get_settings
from grazesim.estimator import estimate_current_state, extend_weather_time_series
from grazesim.models import (
    Candidate,
    FarmConfig,
    FarmData,
    ForageThresholds,
    Model,
    Move,
    OptimizationResult,
    RankedCandidate,
    RotationHistory,
    ScoreBreakdown,
    SimulationResults,
)
from grazesim.simulation import TimeSeriesParams, simulate
from grazesim.utils.model_utils import with_initial_state

logger = logging.getLogger(__name__)

# Display score weights; ranking itself uses ScoreBreakdown.sort_key()
HAY_DAY_WEIGHT = -10000.0
HAY_CONSUMPTION_WEIGHT = -5000.0
MIN_END_FORAGE_WEIGHT = 10.0
TOTAL_END_FORAGE_WEIGHT = 1.0

FORAGE_SUFFIX = "_forage"


# ============================================================================
# Rest Periods
# ============================================================================


def days_since_last_grazed(
    history: RotationHistory, paddock_key: str, today: Optional[date] = None
) -> float:
    """
    Days since a paddock was last grazed

    Returns:
        0 if the herd is on it now, inf if it has never been grazed on
        record, otherwise days since the latest rotation on it ended
    """
    today = today or date.today()
    if history.current_paddock.id == paddock_key:
        return 0.0

    ends: List[date] = []
    for rotation in history.rotations:
        if rotation.paddock != paddock_key:
            continue
        if rotation.end is None:
            return 0.0
        ends.append(rotation.end)

    if not ends:
        return math.inf
    return float((today - max(ends)).days)


# ============================================================================
# Candidate Generation
# ============================================================================


def _move(farm: FarmConfig, key: str, duration: int) -> Move:
    paddock = farm.get_paddock(key)
    return Move(paddock_key=key, numeric_id=paddock.id, name=paddock.name, duration=duration)


def generate_candidates(
    current_paddock: str,
    farm: FarmConfig,
    moves_ahead: int = 2,
    days_per_rotation: int = 14,
    history: Optional[RotationHistory] = None,
    min_rest_days: int = 0,
    today: Optional[date] = None,
) -> List[Candidate]:
    """
    Enumerate candidate rotation sequences in configuration order

    First moves are every paddock except the current one, minus any still
    inside its rest period. With two moves, the second may be any paddock
    except the first move's target; the rest period is only enforced on the
    first move, so the second can return to the current paddock.

    Args:
        current_paddock: Paddock key the herd is on
        farm: Farm configuration
        moves_ahead: 1 or 2
        days_per_rotation: Duration of every move
        history: Rotation history for the rest-period filter (None disables it)
        min_rest_days: Minimum days since last grazed for a first move
        today: Reference day for the rest-period filter

    Returns:
        Candidates with moves and total_days

    Raises:
        ValueError: If moves_ahead is not 1 or 2
        UnknownPaddockError: If current_paddock is not configured
    """
    if moves_ahead not in (1, 2):
        raise ValueError(f"moves_ahead must be 1 or 2, got {moves_ahead}")
    farm.get_paddock(current_paddock)

    first_moves = []
    for key in farm.paddock_keys:
        if key == current_paddock:
            continue
        if history is not None and min_rest_days > 0:
            rested = days_since_last_grazed(history, key, today)
            if rested < min_rest_days:
                logger.debug(f"Skipping '{key}' as first move: rested {rested}d < {min_rest_days}d")
                continue
        first_moves.append(key)

    candidates: List[Candidate] = []
    for first in first_moves:
        if moves_ahead == 1:
            candidates.append(
                Candidate(
                    moves=[_move(farm, first, days_per_rotation)],
                    total_days=days_per_rotation,
                )
            )
            continue
        for second in farm.paddock_keys:
            if second == first:
                continue
            candidates.append(
                Candidate(
                    moves=[
                        _move(farm, first, days_per_rotation),
                        _move(farm, second, days_per_rotation),
                    ],
                    total_days=2 * days_per_rotation,
                )
            )

    return candidates


def candidate_to_schedule(candidate: Candidate, horizon: Optional[int] = None) -> List[float]:
    """
    Per-day paddock id array for a candidate

    Truncated to the horizon, or padded with the last move's paddock.
    """
    horizon = candidate.total_days if horizon is None else horizon
    schedule: List[float] = []
    for move in candidate.moves:
        schedule.extend([float(move.numeric_id)] * move.duration)

    schedule = schedule[:horizon]
    if candidate.moves and len(schedule) < horizon:
        schedule.extend([float(candidate.moves[-1].numeric_id)] * (horizon - len(schedule)))
    return schedule


# ============================================================================
# Simulation and Scoring
# ============================================================================


def simulate_candidate(
    candidate: Candidate,
    initial_state: Mapping[str, float],
    model: Model,
    time_series_params: TimeSeriesParams,
    horizon: Optional[int] = None,
) -> SimulationResults:
    """
    Run one candidate from the estimated state

    The model is cloned with the state as initial values; the candidate's
    occupancy schedule is merged into the shared weather series and every
    array is trimmed to the horizon.
    """
    steps = candidate.total_days if horizon is None else horizon

    params: Dict[str, Sequence[Optional[float]]] = {
        key: list(series[:steps]) for key, series in time_series_params.items()
    }
    params["current_paddock"] = candidate_to_schedule(candidate, steps)

    run_model = with_initial_state(model, initial_state)
    return simulate(run_model, steps=steps, dt=1.0, time_series_params=params)


def score_simulation(
    results: SimulationResults,
    candidate: Candidate,
    thresholds: Optional[ForageThresholds] = None,
) -> ScoreBreakdown:
    """
    Score a simulated candidate

    hay_days counts grazed days on which the grazed paddock started the day
    below the critical threshold; hay_consumption_days counts those between
    critical and low. End-of-horizon forage for every '*_forage' stock gives
    the minimum (resilience) and total (productivity).

    score = -10000 * hay_days - 5000 * hay_consumption_days
            + 10 * min_end_forage + total_end_forage
    """
    t = thresholds or ForageThresholds()
    steps = max(len(results.time) - 1, 0)

    id_to_key = {move.numeric_id: move.paddock_key for move in candidate.moves}
    hay_days = 0
    hay_consumption_days = 0
    for step, paddock_id in enumerate(candidate_to_schedule(candidate, steps)):
        series = results.stocks.get(f"{id_to_key[int(paddock_id)]}{FORAGE_SUFFIX}")
        if not series:
            continue
        forage = series[step]
        if forage < t.critical:
            hay_days += 1
        elif forage < t.low:
            hay_consumption_days += 1

    per_paddock = {
        name[: -len(FORAGE_SUFFIX)]: values[-1]
        for name, values in results.stocks.items()
        if name.endswith(FORAGE_SUFFIX) and values
    }
    end_values = list(per_paddock.values())
    min_end = min(end_values) if end_values else 0.0
    total_end = sum(end_values)

    return ScoreBreakdown(
        score=(
            HAY_DAY_WEIGHT * hay_days
            + HAY_CONSUMPTION_WEIGHT * hay_consumption_days
            + MIN_END_FORAGE_WEIGHT * min_end
            + TOTAL_END_FORAGE_WEIGHT * total_end
        ),
        hay_days=hay_days,
        hay_consumption_days=hay_consumption_days,
        min_end_forage=min_end,
        total_end_forage=total_end,
        per_paddock=per_paddock,
    )


def rank_candidates(entries: Sequence[RankedCandidate]) -> List[RankedCandidate]:
    """
    Order candidates best first and assign ranks from 1

    Sorting uses the lexicographic key (fewest hay days, fewest hay
    consumption days, highest minimum end forage, highest total end forage).
    The sort is stable, so ties keep generation order.
    """
    ordered = sorted(entries, key=lambda entry: entry.score.sort_key(), reverse=True)
    return [
        entry.model_copy(update={"rank": i}) for i, entry in enumerate(ordered, start=1)
    ]


# ============================================================================
# Optimization Engine
# ============================================================================


def optimize_rotation(
    model: Model,
    initial_state: Mapping[str, float],
    current_paddock: str,
    farm: FarmConfig,
    time_series_params: TimeSeriesParams,
    moves_ahead: int = 2,
    days_per_rotation: int = 14,
    history: Optional[RotationHistory] = None,
    min_rest_days: int = 0,
    today: Optional[date] = None,
    include_results: bool = False,
) -> OptimizationResult:
    """
    Simulate, score and rank every candidate

    Candidates run sequentially; each run clones its own model.

    Args:
        model: Canonical model (not mutated)
        initial_state: Estimated stock values
        current_paddock: Paddock key the herd is on
        farm: Farm configuration (paddocks and thresholds)
        time_series_params: Weather and lifecycle series covering the horizon
        moves_ahead: 1 or 2
        days_per_rotation: Duration of every move
        history: Rotation history for the rest-period filter
        min_rest_days: Minimum rest before a paddock can be the first move
        today: Reference day for the rest-period filter
        include_results: Keep every candidate's full simulation in the output

    Returns:
        OptimizationResult with ranked candidates and the best first move
    """
    start_time = time.perf_counter()

    candidates = generate_candidates(
        current_paddock,
        farm,
        moves_ahead=moves_ahead,
        days_per_rotation=days_per_rotation,
        history=history,
        min_rest_days=min_rest_days,
        today=today,
    )

    logger.info("=" * 60)
    logger.info("ROTATION OPTIMIZATION")
    logger.info(f"Current paddock: {current_paddock}")
    logger.info(
        f"Candidates: {len(candidates)} ({moves_ahead} move(s) x {days_per_rotation}d, "
        f"min rest {min_rest_days}d)"
    )
    logger.info("=" * 60)

    entries: List[RankedCandidate] = []
    for candidate in candidates:
        results = simulate_candidate(candidate, initial_state, model, time_series_params)
        score = score_simulation(results, candidate, farm.thresholds)
        entries.append(
            RankedCandidate(
                candidate=candidate,
                score=score,
                results=results if include_results else None,
            )
        )

    ranked = rank_candidates(entries)
    best_move = ranked[0].candidate.moves[0].paddock_key if ranked else None
    elapsed_ms = (time.perf_counter() - start_time) * 1000

    if ranked:
        best = ranked[0]
        logger.info(
            f"Best: {' -> '.join(m.paddock_key for m in best.candidate.moves)} "
            f"(hay days {best.score.hay_days}, min end forage {best.score.min_end_forage:.0f})"
        )
    else:
        logger.warning("No eligible candidates; every other paddock is resting")
    logger.info(f"Optimization completed in {elapsed_ms:.1f} ms")

    return OptimizationResult(
        ranked=ranked,
        best_move=best_move,
        candidate_count=len(candidates),
        elapsed_ms=elapsed_ms,
    )


# ============================================================================
# Convenience Functions
# ============================================================================


def recommend_rotation(
    data: FarmData,
    settings: Optional[Settings] = None,
    today: Optional[date] = None,
    moves_ahead: Optional[int] = None,
    days_per_rotation: Optional[int] = None,
    min_rest_days: Optional[int] = None,
    include_results: bool = False,
) -> OptimizationResult:
    """
    Estimate today's state, build forecast weather and optimize

    Unset options come from settings. The forecast horizon is
    moves_ahead x days_per_rotation days from today, extended with
    prior-year proxy weather where the archive ends.
    """
    settings = settings or get_settings()
    today = today or date.today()
    moves = settings.moves_ahead if moves_ahead is None else moves_ahead
    rotation_days = settings.days_per_rotation if days_per_rotation is None else days_per_rotation
    rest_days = settings.min_rest_days if min_rest_days is None else min_rest_days

    estimate = estimate_current_state(
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

    time_series, _ = extend_weather_time_series(
        data.weather,
        today,
        moves * rotation_days,
        data.planting,
        data.farm,
        settings.default_et,
    )

    return optimize_rotation(
        data.model,
        estimate.final_state,
        data.history.current_paddock.id,
        data.farm,
        time_series,
        moves_ahead=moves,
        days_per_rotation=rotation_days,
        history=data.history,
        min_rest_days=rest_days,
        today=today,
        include_results=include_results,
    )
