"""
Shared fixtures: a synthetic farm record set built around 1 March 2025
"""

import math
import os
from datetime import date, timedelta

import pytest

from grazesim.config import PACKAGE_DATA_DIR
from grazesim.loader import load_farm_config, load_model
from grazesim.models import (
    FarmData,
    PlantingSchedule,
    RotationHistory,
    WeatherArchive,
)

TODAY = date(2025, 3, 1)
ARCHIVE_START = date(2024, 1, 1)
ARCHIVE_END = date(2025, 3, 31)


def make_archive(start=ARCHIVE_START, end=ARCHIVE_END, **overrides):
    """Gap-free seasonal weather: warm summers, mild winters, rain every third day"""
    days = (end - start).days + 1
    time, precip, t_max, t_min, et = [], [], [], [], []
    for i in range(days):
        day = start + timedelta(days=i)
        doy = day.timetuple().tm_yday
        high = 75.0 + 20.0 * math.sin(2 * math.pi * (doy - 110) / 365)
        time.append(day.isoformat())
        t_max.append(round(high, 1))
        t_min.append(round(high - 20.0, 1))
        precip.append(6.0 if i % 3 == 0 else 0.0)
        et.append(2.0)
    data = {
        "time": time,
        "precipitation_sum": precip,
        "temperature_2m_max": t_max,
        "temperature_2m_min": t_min,
        "et0_fao_evapotranspiration": et,
    }
    data.update(overrides)
    return WeatherArchive(**data)


@pytest.fixture
def archive():
    return make_archive()


@pytest.fixture
def farm():
    return load_farm_config()


@pytest.fixture
def model():
    return load_model("grazing-rotation", os.path.join(PACKAGE_DATA_DIR, "models"))


@pytest.fixture
def history():
    return RotationHistory.model_validate(
        {
            "rotations": [
                {"paddock": "cce", "start": "2025-01-01", "end": "2025-01-14"},
                {"paddock": "ccw", "start": "2025-01-14", "end": "2025-01-28"},
                {"paddock": "hog", "start": "2025-01-28", "end": "2025-02-10", "hayFed": True},
                {"paddock": "big", "start": "2025-02-10"},
            ],
            "currentPaddock": {"id": "big", "name": "Big Pasture", "since": "2025-02-10"},
        }
    )


@pytest.fixture
def planting():
    cool = {"2024": {"planted": "2024-10-15", "species": "Cereal rye + crimson clover"}}
    return PlantingSchedule.model_validate(
        {
            "paddocks": {
                "cce": {
                    "cool_season": cool,
                    "warm_season": {"2025": {"planned": "2025-05-20"}},
                },
                "ccw": {"cool_season": cool},
                "big": {"cool_season": cool},
                "hog": {"cool_season": {"2024": {"planned": "2024-11-01"}}},
            }
        }
    )


@pytest.fixture
def farm_data(model, farm, archive, history, planting):
    return FarmData(
        model=model,
        farm=farm,
        weather=archive,
        history=history,
        planting=planting,
    )


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def archive_factory():
    return make_archive
