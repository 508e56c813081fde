"""
Planting analysis
Historical planting windows, planting-date scenario projections and the gap
between cool-season death and warm-season graze readiness.

Soil temperature is not measured, so it is estimated from air temperature with
a 4-day lag and 60% damping around the 63°F annual mean for North Texas. That
is close enough for the "soil above 60°F" warm-season threshold.
"""

from bisect import bisect_right
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence
import logging

import numpy as np

from grazesim.constants import COOL_SEASON_KEY, VALID_SEASON_KEYS, WARM_SEASON_KEY
from grazesim.models import FarmConfig, PlantingRecord, PlantingSchedule, WeatherArchive
from grazesim.preprocessor import (
    COOL_SEASON,
    WARM_SEASON,
    cool_season_temp_multiplier,
    generate_cool_season_lifecycle,
    generate_warm_season_lifecycle,
    proxy_date,
    warm_season_temp_multiplier,
)

logger = logging.getLogger(__name__)

ANNUAL_MEAN_TEMP = 63.0  # °F, Collinsville TX
SOIL_DAMPING = 0.6
SOIL_LAG_DAYS = 4

GRAZEABLE_LIFECYCLE = 0.3
PEAK_LIFECYCLE = 0.9
SCENARIO_WEEKS = (6, 8, 10, 12)
FALLBACK_TEMP_MULT = 0.5

MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def estimate_soil_temp(air_temp_avg: Sequence[float]) -> List[float]:
    """
    Soil temperature proxy from daily average air temperature

    soil[i] = mean + damping * (air[max(0, i - lag)] - mean)
    """
    air = np.asarray(air_temp_avg, dtype=float)
    if air.size == 0:
        return []
    lagged = air[np.maximum(np.arange(air.size) - SOIL_LAG_DAYS, 0)]
    return (ANNUAL_MEAN_TEMP + SOIL_DAMPING * (lagged - ANNUAL_MEAN_TEMP)).tolist()


# ============================================================================
# Planting Records
# ============================================================================


def _latest_record(
    planting: PlantingSchedule, key: str, season: str, as_of: Optional[date] = None
) -> Optional[PlantingRecord]:
    """
    Record for the latest seeding, or the latest one on or before `as_of`

    When every seeding is after `as_of`, the earliest upcoming one is returned.
    """
    paddock = planting.paddocks.get(key)
    if paddock is None:
        return None
    records = [
        (record.planted or record.planned, record)
        for record in getattr(paddock, season).values()
        if record.planted or record.planned
    ]
    if not records:
        return None
    records.sort(key=lambda item: item[0])
    if as_of is None:
        return records[-1][1]
    seeded = [record for day, record in records if day <= as_of]
    return seeded[-1] if seeded else records[0][1]


def get_planting_dates(planting: PlantingSchedule, key: str, season: str) -> List[date]:
    """Every recorded seeding date (planted, else planned) for a paddock's season, ascending"""
    if season not in VALID_SEASON_KEYS:
        raise ValueError(f"Unknown season '{season}'. Valid: {sorted(VALID_SEASON_KEYS)}")
    paddock = planting.paddocks.get(key)
    if paddock is None:
        return []
    return sorted(
        {
            record.planted or record.planned
            for record in getattr(paddock, season).values()
            if record.planted or record.planned
        }
    )


def seeding_in_effect(seedings: Sequence[date], day: date) -> date:
    """
    The seeding that governs the crop on `day`

    The latest seeding on or before the day; before the first one, the first
    upcoming seeding (so the crop counts as not yet planted).
    """
    idx = bisect_right(seedings, day) - 1
    return seedings[max(idx, 0)]


def get_planting_date(
    planting: PlantingSchedule, key: str, season: str, as_of: Optional[date] = None
) -> Optional[date]:
    """
    Seeding date for a paddock's season

    Prefers the actual 'planted' date, falling back to 'planned'. Without
    `as_of` the latest seeding on record is used; with it, the one in effect
    on that day.

    Raises:
        ValueError: If season is not 'cool_season' or 'warm_season'
    """
    seedings = get_planting_dates(planting, key, season)
    if not seedings:
        return None
    if as_of is None:
        return seedings[-1]
    return seeding_in_effect(seedings, as_of)


# ============================================================================
# Historical Window Analysis
# ============================================================================


def _group_by_year(archive: WeatherArchive) -> Dict[int, Dict[str, list]]:
    """Split the archive into per-year series, skipping days without temperatures"""
    years: Dict[int, Dict[str, list]] = {}
    for i, day in enumerate(archive.time):
        t_max = archive.temperature_2m_max[i]
        t_min = archive.temperature_2m_min[i]
        if t_max is None or t_min is None:
            continue
        year = years.setdefault(
            int(day[:4]), {"dates": [], "temp_min": [], "temp_avg": [], "precip": []}
        )
        year["dates"].append(day)
        year["temp_min"].append(t_min)
        year["temp_avg"].append((t_max + t_min) / 2)
        year["precip"].append(archive.precipitation_sum[i] or 0.0)
    return years


def _rolling_mean(values: Sequence[float], window: int = 7) -> List[float]:
    arr = np.asarray(values, dtype=float)
    cumulative = np.concatenate(([0.0], np.cumsum(arr)))
    idx = np.arange(arr.size)
    lo = np.maximum(idx - window + 1, 0)
    return ((cumulative[idx + 1] - cumulative[lo]) / (idx + 1 - lo)).tolist()


def _first_index(dates: Sequence[str], predicate) -> Optional[int]:
    for i, day in enumerate(dates):
        if predicate(day):
            return i
    return None


def _window_precip(data: Dict[str, list], start: str, end_exclusive: str) -> float:
    total = sum(
        p for day, p in zip(data["dates"], data["precip"]) if start <= day < end_exclusive
    )
    return round(total, 1)


def _doy_to_month_day(doy: int) -> str:
    """Approximate calendar day for a day of year (non-leap year)"""
    day = date(2025, 1, 1) + timedelta(days=doy - 1)
    return f"{MONTH_NAMES[day.month - 1]} {day.day}"


def _average_doy(iso_dates: List[str]) -> Optional[int]:
    if not iso_dates:
        return None
    return round(sum(date.fromisoformat(d).timetuple().tm_yday for d in iso_dates) / len(iso_dates))


def analyze_cool_season_window(archive: WeatherArchive) -> Dict[str, Any]:
    """
    Cool-season planting window per year

    For each year with October data:
    - cooldown_date: first Oct-Nov day whose 7-day mean temperature is below 70°F
    - window_precip: precipitation 15 Oct to 15 Nov (mm)
    - first_frost: first day after 1 Oct with a low below 32°F

    Returns:
        {"years": [...], "averages": {cooldown_doy, cooldown_date_approx, window_precip_mm}}
    """
    year_results = []
    for year, data in _group_by_year(archive).items():
        oct_start = _first_index(data["dates"], lambda d: d >= f"{year}-10-01")
        if oct_start is None:
            continue

        rolling = _rolling_mean(data["temp_avg"])
        cooldown_date = None
        for i in range(oct_start, len(data["dates"])):
            if data["dates"][i] > f"{year}-11-30":
                break
            if rolling[i] < 70:
                cooldown_date = data["dates"][i]
                break

        first_frost = None
        for i in range(oct_start, len(data["dates"])):
            if data["temp_min"][i] < 32:
                first_frost = data["dates"][i]
                break

        year_results.append(
            {
                "year": year,
                "cooldown_date": cooldown_date,
                "window_precip": _window_precip(data, f"{year}-10-15", f"{year}-11-16"),
                "first_frost": first_frost,
            }
        )

    cooldown_doy = _average_doy([r["cooldown_date"] for r in year_results if r["cooldown_date"]])
    avg_precip = (
        round(sum(r["window_precip"] for r in year_results) / len(year_results), 1)
        if year_results
        else 0.0
    )
    return {
        "years": year_results,
        "averages": {
            "cooldown_doy": cooldown_doy,
            "cooldown_date_approx": _doy_to_month_day(cooldown_doy) if cooldown_doy else "N/A",
            "window_precip_mm": avg_precip,
        },
    }


def analyze_warm_season_window(archive: WeatherArchive) -> Dict[str, Any]:
    """
    Warm-season planting window per year

    For each year with April data:
    - soil_warm_date: start of the first 3-day run from April on with
      estimated soil temperature above 60°F
    - window_precip: May-June precipitation (mm)
    """
    year_results = []
    for year, data in _group_by_year(archive).items():
        apr_start = _first_index(data["dates"], lambda d: d >= f"{year}-04-01")
        if apr_start is None:
            continue

        soil = estimate_soil_temp(data["temp_avg"])
        soil_warm_date = None
        consecutive = 0
        for i in range(apr_start, len(data["dates"])):
            if soil[i] > 60:
                consecutive += 1
                if consecutive >= 3:
                    soil_warm_date = data["dates"][i - 2]
                    break
            else:
                consecutive = 0

        year_results.append(
            {
                "year": year,
                "soil_warm_date": soil_warm_date,
                "window_precip": _window_precip(data, f"{year}-05-01", f"{year}-07-01"),
            }
        )

    warm_doy = _average_doy([r["soil_warm_date"] for r in year_results if r["soil_warm_date"]])
    avg_precip = (
        round(sum(r["window_precip"] for r in year_results) / len(year_results), 1)
        if year_results
        else 0.0
    )
    return {
        "years": year_results,
        "averages": {
            "soil_warm_doy": warm_doy,
            "soil_warm_date_approx": _doy_to_month_day(warm_doy) if warm_doy else "N/A",
            "window_precip_mm": avg_precip,
        },
    }


# ============================================================================
# Planting Scenarios
# ============================================================================


def _first_at_least(values: Sequence[float], threshold: float) -> Optional[int]:
    for i, value in enumerate(values):
        if value >= threshold:
            return i
    return None


def project_planting_scenarios(
    season: str,
    planting_dates: Sequence[str],
    archive: WeatherArchive,
    projection_days: int = 120,
) -> List[Dict[str, Any]]:
    """
    Compare candidate planting dates

    For each date the lifecycle runs from planting day and is combined with
    that year's temperature multipliers (or the prior year's as a proxy, or
    0.5 when neither exists).

    Args:
        season: 'cool' or 'warm'
        planting_dates: ISO dates to compare
        archive: Daily weather archive
        projection_days: Days projected after planting

    Returns:
        Per date: days to grazeable (lifecycle >= 0.3), combined multipliers at
        weeks 6/8/10/12, peak start (lifecycle >= 0.9), and the lifecycle and
        combined arrays
    """
    if season not in ("cool", "warm"):
        raise ValueError(f"Unknown season '{season}'. Use 'cool' or 'warm'")

    temp_mult = cool_season_temp_multiplier if season == "cool" else warm_season_temp_multiplier
    make_lifecycle = (
        generate_cool_season_lifecycle if season == "cool" else generate_warm_season_lifecycle
    )

    scenarios = []
    for plant_str in planting_dates:
        plant = date.fromisoformat(plant_str)
        lifecycle = make_lifecycle(0, projection_days)

        temp_mults = []
        for d in range(projection_days):
            day = plant + timedelta(days=d)
            idx = archive.index_of(day)
            if idx is None:
                idx = archive.index_of(proxy_date(day))
            t_max = archive.temperature_2m_max[idx] if idx is not None else None
            t_min = archive.temperature_2m_min[idx] if idx is not None else None
            if t_max is None or t_min is None:
                temp_mults.append(FALLBACK_TEMP_MULT)
            else:
                temp_mults.append(temp_mult(t_max, t_min))

        combined = (np.asarray(lifecycle) * np.asarray(temp_mults)).tolist()
        days_to_grazeable = _first_at_least(lifecycle, GRAZEABLE_LIFECYCLE)
        peak_start = _first_at_least(lifecycle, PEAK_LIFECYCLE)

        scenarios.append(
            {
                "plant_date": plant_str,
                "days_to_grazeable": days_to_grazeable,
                "grazeable_date": (
                    (plant + timedelta(days=days_to_grazeable)).isoformat()
                    if days_to_grazeable is not None
                    else None
                ),
                "week_multipliers": {
                    f"week{week}": (
                        round(combined[week * 7], 2) if week * 7 < projection_days else None
                    )
                    for week in SCENARIO_WEEKS
                },
                "peak_start_day": peak_start,
                "peak_start_date": (
                    (plant + timedelta(days=peak_start)).isoformat() if peak_start is not None else None
                ),
                "lifecycle": lifecycle,
                "combined": combined,
            }
        )

    return scenarios


# ============================================================================
# Transition Gap
# ============================================================================


def gap_severity(gap_days: Optional[int]) -> str:
    if gap_days is None:
        return "unknown"
    if gap_days <= 0:
        return "none"
    if gap_days <= 30:
        return "manageable"
    if gap_days <= 60:
        return "significant"
    return "critical"


def analyze_transition_gap(planting: PlantingSchedule, farm: FarmConfig) -> List[Dict[str, Any]]:
    """
    Days between cool-season death and warm-season graze readiness per paddock

    Cool-season decline starts 163 days after seeding and the stand is dead 30
    days later; the warm-season mix is first grazeable 40 days after planting.
    """
    cool_lc = COOL_SEASON["lifecycle"]
    warm_lc = WARM_SEASON["lifecycle"]

    results = []
    for key, paddock in farm.paddocks.items():
        cool_plant = get_planting_date(planting, key, COOL_SEASON_KEY)
        warm_plant = get_planting_date(planting, key, WARM_SEASON_KEY)

        if cool_plant is None:
            results.append(
                {
                    "paddock": key,
                    "name": paddock.name,
                    "error": "No cool-season planting date",
                    "gap_severity": gap_severity(None),
                }
            )
            continue

        decline_start = cool_plant + timedelta(days=cool_lc["decline_start"])
        cool_death = cool_plant + timedelta(days=cool_lc["death"])
        warm_ready = warm_plant + timedelta(days=warm_lc["first_graze"]) if warm_plant else None
        gap_days = (warm_ready - cool_death).days if warm_ready else None

        results.append(
            {
                "paddock": key,
                "name": paddock.name,
                "cool_plant_date": cool_plant.isoformat(),
                "cool_decline_start": decline_start.isoformat(),
                "cool_death": cool_death.isoformat(),
                "warm_plant_date": warm_plant.isoformat() if warm_plant else None,
                "warm_graze_ready": warm_ready.isoformat() if warm_ready else None,
                "gap_days": gap_days,
                "gap_severity": gap_severity(gap_days),
            }
        )

    return results


# ============================================================================
# Status and Recommendations
# ============================================================================


def paddock_planting_status(
    planting: PlantingSchedule,
    farm: FarmConfig,
    season: str,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Planting state of every paddock for one season ('cool_season' or 'warm_season')"""
    today = today or date.today()
    status = []
    for key, paddock in farm.paddocks.items():
        plant_date = get_planting_date(planting, key, season, as_of=today)
        record = _latest_record(planting, key, season, as_of=today)
        status.append(
            {
                "paddock": key,
                "name": paddock.name,
                "plant_date": plant_date.isoformat() if plant_date else None,
                "is_planted": bool(record and record.planted),
                "is_planned": bool(record and record.planned),
                "days_since_planting": (today - plant_date).days if plant_date else None,
                "species": (record.species if record and record.species else "Unknown"),
                "notes": (record.notes if record and record.notes else ""),
            }
        )
    return status


def get_planting_recommendations(
    archive: WeatherArchive,
    planting: PlantingSchedule,
    farm: FarmConfig,
    season: str = "next",
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Planting report: historical windows, candidate-date scenarios, paddock
    status and transition gaps

    Args:
        archive: Daily weather archive
        planting: Planting schedule
        farm: Farm configuration
        season: 'cool', 'warm' or 'next' (warm through June, cool after)
        today: Reference day (defaults to the current date)
    """
    today = today or date.today()
    if season == "next":
        season = "warm" if today.month <= 6 else "cool"
    if season not in ("cool", "warm"):
        raise ValueError(f"Unknown season '{season}'. Use 'cool', 'warm' or 'next'")

    season_key = COOL_SEASON_KEY if season == "cool" else WARM_SEASON_KEY
    year = today.year
    if season == "cool":
        window = analyze_cool_season_window(archive)
        candidate_dates = [f"{year}-10-20", f"{year}-11-01", f"{year}-11-15"]
    else:
        window = analyze_warm_season_window(archive)
        candidate_dates = [f"{year}-05-15", f"{year}-06-01", f"{year}-06-15"]

    logger.debug(f"Planting recommendations for {season} season, candidates {candidate_dates}")

    return {
        "season": season,
        "season_key": season_key,
        "window_analysis": window,
        "candidate_dates": candidate_dates,
        "scenarios": project_planting_scenarios(season, candidate_dates, archive),
        "paddock_status": paddock_planting_status(planting, farm, season_key, today),
        "transition_gap": analyze_transition_gap(planting, farm),
    }
