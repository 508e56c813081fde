"""
Weather and lifecycle preprocessing
Turns raw daily weather and planting dates into growth multiplier arrays that
the simulation engine consumes as time-series parameters.

Weather is exogenous: it cannot change during a run, so its effect on growth
is computed once up front. Stock-dependent factors (soil moisture, organic
matter) stay inside the model equations.

All temperatures are degrees Fahrenheit; precipitation and evapotranspiration
are millimetres per day.
"""

from datetime import date
from typing import List, Optional, Sequence, Union
import logging

import numpy as np

from grazesim.constants import DEFAULT_ET
from grazesim.models import WeatherArchive
from grazesim.types import ProcessedWeatherDict, PreparedTimeSeriesDict

logger = logging.getLogger(__name__)


# ============================================================================
# Crop Profiles
# ============================================================================

COOL_SEASON = {
    "name": "Winter Mix (Rye + Clover + Covers)",
    "temps": {
        "dormant": 35,
        "slow": 50,
        "optimal_low": 60,
        "optimal_high": 75,
        "stress": 80,
        "death": 85,
    },
    # Days from seeding
    "lifecycle": {
        "germination": 14,
        "establishment": 42,
        "peak": 72,
        "decline_start": 163,
        "death": 193,
    },
    "rates": {
        "germination": 0.0,
        "establishment_max": 0.5,
        "peak": 1.0,
    },
}

WARM_SEASON = {
    "name": "Summer Mix (Sorghum-sudan + Pearl Millet + Cowpeas)",
    "temps": {
        "dormant": 50,
        "slow": 65,
        "optimal_low": 75,
        "peak": 90,
        "optimal_high": 95,
        "stress": 100,
    },
    # Days from planting
    "lifecycle": {
        "germination": 10,
        "establishment": 40,
        "first_graze": 40,
        "peak": 55,
        "regrowth_period": 35,
    },
    "rates": {
        "germination": 0.0,
        "establishment_max": 0.7,
        "peak": 1.0,
        "regrowth_rate": 1.2,
    },
}


# ============================================================================
# Temperature Response
# ============================================================================


def cool_season_temp_multiplier(temp_max_f: float, temp_min_f: float) -> float:
    """
    Growth multiplier for the cool-season mix from the day's temperatures

    Dormant below 35°F, optimal 60-75°F, heat stress above 75°F, near-zero
    above 85°F.
    """
    t = COOL_SEASON["temps"]
    avg = (temp_max_f + temp_min_f) / 2

    if avg < t["dormant"]:
        return 0.0
    if avg < t["slow"]:
        return 0.3 * (avg - t["dormant"]) / (t["slow"] - t["dormant"])
    if avg < t["optimal_low"]:
        return 0.3 + 0.4 * (avg - t["slow"]) / (t["optimal_low"] - t["slow"])
    if avg <= t["optimal_high"]:
        return 0.7 + 0.3 * (avg - t["optimal_low"]) / (t["optimal_high"] - t["optimal_low"])
    if avg <= t["stress"]:
        return 1.0 - 0.4 * (avg - t["optimal_high"]) / (t["stress"] - t["optimal_high"])
    if avg <= t["death"]:
        return 0.6 - 0.5 * (avg - t["stress"]) / (t["death"] - t["stress"])
    return 0.05


def warm_season_temp_multiplier(temp_max_f: float, temp_min_f: float) -> float:
    """
    Growth multiplier for the warm-season mix from the day's temperatures

    Dormant below 50°F, peak 90-95°F, declining above 95°F.
    """
    t = WARM_SEASON["temps"]
    avg = (temp_max_f + temp_min_f) / 2

    if avg < t["dormant"]:
        return 0.0
    if avg < t["slow"]:
        return 0.4 * (avg - t["dormant"]) / (t["slow"] - t["dormant"])
    if avg < t["optimal_low"]:
        return 0.4 + 0.3 * (avg - t["slow"]) / (t["optimal_low"] - t["slow"])
    if avg < t["peak"]:
        return 0.7 + 0.3 * (avg - t["optimal_low"]) / (t["peak"] - t["optimal_low"])
    if avg <= t["optimal_high"]:
        return 1.0
    if avg <= t["stress"]:
        return 1.0 - 0.2 * (avg - t["optimal_high"]) / (t["stress"] - t["optimal_high"])
    return 0.5


# ============================================================================
# Lifecycle Stage
# ============================================================================


def cool_season_lifecycle(days_since_planting: float, avg_temp: Optional[float] = None) -> float:
    """
    Cool-season growth-stage multiplier

    Germination (0), establishment ramp to 0.5, ramp to full production by
    day 72, peak until day 163, then a 30-day heat decline to 0 at day 193.
    Days before planting (negative) give 0.

    Args:
        days_since_planting: Days since seeding (may be negative)
        avg_temp: Optional average temperature; above the death threshold the
            decline runs twice as fast

    Returns:
        Multiplier in [0, 1]
    """
    lc = COOL_SEASON["lifecycle"]
    rates = COOL_SEASON["rates"]
    d = days_since_planting

    if d < lc["germination"]:
        return rates["germination"]
    if d < lc["establishment"]:
        progress = (d - lc["germination"]) / (lc["establishment"] - lc["germination"])
        return rates["establishment_max"] * progress
    if d < lc["peak"]:
        progress = (d - lc["establishment"]) / (lc["peak"] - lc["establishment"])
        return rates["establishment_max"] + (rates["peak"] - rates["establishment_max"]) * progress
    if d < lc["decline_start"]:
        return rates["peak"]
    if d < lc["death"]:
        decline = 1.0 - (d - lc["decline_start"]) / (lc["death"] - lc["decline_start"])
        if avg_temp is not None and avg_temp > COOL_SEASON["temps"]["death"]:
            return decline * 0.5
        return decline
    return 0.0


def warm_season_lifecycle(
    days_since_planting: float, days_since_last_graze: Optional[float] = None
) -> float:
    """
    Warm-season growth-stage multiplier

    Sorghum-sudan tillers after cutting, so within the regrowth period after a
    grazing the multiplier follows a regrowth ramp that can exceed 1.0.
    """
    lc = WARM_SEASON["lifecycle"]
    rates = WARM_SEASON["rates"]

    if days_since_last_graze is not None and days_since_last_graze < lc["regrowth_period"]:
        return rates["regrowth_rate"] * days_since_last_graze / lc["regrowth_period"]

    d = days_since_planting
    if d < lc["germination"]:
        return rates["germination"]
    if d < lc["establishment"]:
        progress = (d - lc["germination"]) / (lc["establishment"] - lc["germination"])
        return rates["establishment_max"] * progress
    if d < lc["peak"]:
        progress = (d - lc["establishment"]) / (lc["peak"] - lc["establishment"])
        return rates["establishment_max"] + (rates["peak"] - rates["establishment_max"]) * progress
    return rates["peak"]


def generate_cool_season_lifecycle(plant_index: int, steps: int) -> List[float]:
    """
    Cool-season lifecycle array for a simulation window

    A negative plant_index means the crop was seeded before the window began
    (e.g. -98 = planted 98 days before step 0), so the crop is already
    established at step 0.

    Args:
        plant_index: Step index of the planting day (may be negative)
        steps: Number of steps in the window

    Returns:
        One multiplier per step
    """
    return [cool_season_lifecycle(step - plant_index) for step in range(steps)]


def generate_warm_season_lifecycle(plant_index: int, steps: int) -> List[float]:
    """Warm-season lifecycle array for a simulation window (no regrowth tracking)"""
    return [warm_season_lifecycle(step - plant_index) for step in range(steps)]


# ============================================================================
# Moisture
# ============================================================================


def moisture_stress_multiplier(water_balance: float) -> float:
    """
    Growth multiplier from a rolling water balance (precipitation minus ET, mm)

    1.0 at a surplus of 30 mm or more, 0.1 floor in severe drought (< -30 mm).
    """
    if water_balance >= 30:
        return 1.0
    if water_balance >= 10:
        return 0.7 + 0.3 * (water_balance - 10) / 20
    if water_balance >= -10:
        return 0.4 + 0.3 * (water_balance + 10) / 20
    if water_balance >= -30:
        return 0.2 + 0.2 * (water_balance + 30) / 20
    return 0.1


def rolling_sums(values: Sequence[float], window: int = 14) -> List[float]:
    """
    Trailing window sums without look-ahead

    Element i is the sum of the last min(window, i + 1) values.
    """
    if window <= 0:
        raise ValueError(f"Rolling window must be positive, got {window}")
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return []
    cumulative = np.cumsum(arr)
    sums = cumulative.copy()
    sums[window:] = cumulative[window:] - cumulative[:-window]
    return sums.tolist()


def calculate_moisture_stress(
    precip: Sequence[float], et: Sequence[float], window: int = 14
) -> List[float]:
    """
    Moisture stress multiplier per day from rolling precipitation and ET sums

    Returns:
        Multipliers in [0.1, 1.0], aligned with the inputs
    """
    if len(precip) != len(et):
        raise ValueError(
            f"Precipitation ({len(precip)}) and ET ({len(et)}) series differ in length"
        )
    balance = np.asarray(rolling_sums(precip, window)) - np.asarray(rolling_sums(et, window))
    return [moisture_stress_multiplier(float(b)) for b in balance]


# ============================================================================
# Weather Preprocessing
# ============================================================================


def preprocess_weather(
    archive: WeatherArchive, default_et: float = DEFAULT_ET
) -> ProcessedWeatherDict:
    """
    Daily growth drivers from raw weather

    Missing precipitation counts as 0 mm and missing ET as `default_et`.
    Missing temperatures carry the previous day's value forward (or 60°F on
    the first day) so the arrays stay aligned with the dates.

    Args:
        archive: Daily weather (already sliced to the window of interest)
        default_et: ET substitute for missing values

    Returns:
        Dates plus cool/warm temperature multipliers, precipitation, ET and
        average temperature, one entry per day
    """
    result: ProcessedWeatherDict = {
        "dates": [],
        "cool_temp_mult": [],
        "warm_temp_mult": [],
        "precip": [],
        "et": [],
        "temp_avg": [],
    }

    last_max, last_min = 60.0, 60.0
    missing_temps = 0

    for i, day in enumerate(archive.time):
        temp_max = archive.temperature_2m_max[i]
        temp_min = archive.temperature_2m_min[i]
        if temp_max is None or temp_min is None:
            missing_temps += 1
            temp_max = last_max if temp_max is None else temp_max
            temp_min = last_min if temp_min is None else temp_min
        last_max, last_min = temp_max, temp_min

        precip = archive.precipitation_sum[i]
        et = archive.et0_fao_evapotranspiration[i]

        result["dates"].append(day)
        result["cool_temp_mult"].append(cool_season_temp_multiplier(temp_max, temp_min))
        result["warm_temp_mult"].append(warm_season_temp_multiplier(temp_max, temp_min))
        result["precip"].append(0.0 if precip is None else float(precip))
        result["et"].append(default_et if et is None else float(et))
        result["temp_avg"].append((temp_max + temp_min) / 2)

    if missing_temps:
        logger.warning(f"{missing_temps} day(s) had missing temperatures; carried forward")

    return result


def prepare_time_series(
    archive: WeatherArchive,
    default_et: float = DEFAULT_ET,
    window: int = 14,
) -> PreparedTimeSeriesDict:
    """
    Processed weather plus rolling moisture indicators

    Returns:
        Everything from preprocess_weather plus moisture_stress,
        precip_14day, et_14day and the number of steps
    """
    processed = preprocess_weather(archive, default_et)
    return {
        **processed,
        "moisture_stress": calculate_moisture_stress(processed["precip"], processed["et"], window),
        "precip_14day": rolling_sums(processed["precip"], window),
        "et_14day": rolling_sums(processed["et"], window),
        "steps": len(processed["dates"]),
    }


def get_planting_index(plant_date: Union[str, date], dates: Sequence[str]) -> int:
    """
    Index of the first date on or after the planting date

    Returns 0 when every date precedes planting.
    """
    target = plant_date.isoformat() if isinstance(plant_date, date) else plant_date
    for i, day in enumerate(dates):
        if day >= target:
            return i
    return 0


def proxy_date(day: date) -> date:
    """Same calendar day one year earlier (29 February maps to 28 February)"""
    if day.month == 2 and day.day == 29:
        return date(day.year - 1, 2, 28)
    return day.replace(year=day.year - 1)


def days_between(start: Union[str, date], end: Union[str, date]) -> int:
    """Whole days from start to end (negative if end is earlier)"""
    start_d = date.fromisoformat(start) if isinstance(start, str) else start
    end_d = date.fromisoformat(end) if isinstance(end, str) else end
    return (end_d - start_d).days


# ============================================================================
# Combined Growth
# ============================================================================


def is_cool_season_month(month: int) -> bool:
    """Cool-season mix is active October through May"""
    return month >= 10 or month <= 5


def annual_forage_growth(
    day: date,
    temp_max_f: float,
    temp_min_f: float,
    recent_precip: float,
    recent_et: float,
    cool_plant_date: Optional[date] = None,
    warm_plant_date: Optional[date] = None,
    last_graze_date: Optional[date] = None,
) -> float:
    """
    Combined growth multiplier (temperature x lifecycle x moisture) for a day

    The active season is chosen from the month. Returns 0 when the active
    season has no known planting date.

    Args:
        day: Calendar day
        temp_max_f: Daily high
        temp_min_f: Daily low
        recent_precip: Precipitation over the moisture window (mm)
        recent_et: ET over the moisture window (mm)
        cool_plant_date: Winter mix seeding date
        warm_plant_date: Summer mix planting date
        last_graze_date: Most recent grazing (warm-season regrowth)

    Returns:
        Growth multiplier (can exceed 1.0 during warm-season regrowth)
    """
    avg_temp = (temp_max_f + temp_min_f) / 2
    moisture = moisture_stress_multiplier(recent_precip - recent_et)

    if is_cool_season_month(day.month):
        if cool_plant_date is None:
            return 0.0
        lifecycle = cool_season_lifecycle((day - cool_plant_date).days, avg_temp)
        return cool_season_temp_multiplier(temp_max_f, temp_min_f) * lifecycle * moisture

    if warm_plant_date is None:
        return 0.0
    days_since_graze = None
    if last_graze_date is not None and last_graze_date > warm_plant_date:
        days_since_graze = (day - last_graze_date).days
    lifecycle = warm_season_lifecycle((day - warm_plant_date).days, days_since_graze)
    return warm_season_temp_multiplier(temp_max_f, temp_min_f) * lifecycle * moisture
