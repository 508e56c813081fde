"""
Tests for state estimation and weather time series
"""

from datetime import date

import pytest
from grazesim.estimator import (
    build_historical_paddock_schedule,
    build_weather_time_series,
    estimate_current_state,
    extend_weather_time_series,
    extract_final_state,
)
from grazesim.exceptions import (
    InsufficientHistoryError,
    InsufficientWeatherCoverageError,
    UnknownPaddockError,
)
from grazesim.models import PlantingSchedule, RotationHistory
from grazesim.simulation import simulate


def test_historical_schedule(history, farm):
    """Test occupancy by day with later rotations winning on move days"""
    schedule = build_historical_paddock_schedule(history, "2024-12-31", 60, farm)

    assert len(schedule) == 60
    # No rotation covers 31 Dec, so the current paddock applies
    assert schedule[0] == 3.0
    assert schedule[1] == 1.0
    assert schedule[13] == 1.0
    # 14 Jan is both cce's end and ccw's start
    assert schedule[14] == 2.0
    assert schedule[28] == 4.0
    # Open rotation on big runs to the end of the window
    assert schedule[41:] == [3.0] * 19


def test_historical_schedule_unknown_paddock(farm):
    """Test that a rotation on an unconfigured paddock is rejected"""
    history = RotationHistory.model_validate(
        {
            "rotations": [{"paddock": "north", "start": "2025-01-01", "end": "2025-01-05"}],
            "currentPaddock": {"id": "big", "since": "2025-01-05"},
        }
    )
    with pytest.raises(UnknownPaddockError):
        build_historical_paddock_schedule(history, date(2025, 1, 1), 10, farm)


def test_weather_time_series(archive, planting, farm):
    """Test weather and lifecycle arrays for a window inside the archive"""
    series = build_weather_time_series(archive, "2025-01-01", 30, planting, farm)

    for key in ("cool_temp_mult", "daily_precip", "daily_et"):
        assert len(series[key]) == 30
    assert series["daily_precip"][0] == 6.0
    assert series["daily_et"][0] == 2.0
    assert "cce_lifecycle" in series
    assert "hog_lifecycle" in series
    # No planting record for south: the static parameter stays in effect
    assert "south_lifecycle" not in series


def test_lifecycle_ignores_future_seeding(archive, farm):
    """Test that next season's planned date does not reset a standing crop"""
    planting = PlantingSchedule.model_validate(
        {
            "paddocks": {
                "cce": {
                    "cool_season": {
                        "2024": {"planted": "2024-10-15"},
                        "2025": {"planned": "2025-10-20"},
                    }
                }
            }
        }
    )
    series = build_weather_time_series(archive, "2025-01-01", 30, planting, farm)

    # 78 to 107 days after seeding: peak production throughout
    assert series["cce_lifecycle"] == [1.0] * 30


def test_lifecycle_restarts_on_reseeding(archive, farm):
    """Test that a seeding inside the window restarts the curve from that day"""
    planting = PlantingSchedule.model_validate(
        {
            "paddocks": {
                "cce": {
                    "cool_season": {
                        "2024": {"planted": "2024-10-15"},
                        "2025": {"planned": "2025-01-10"},
                    }
                }
            }
        }
    )
    lifecycle = build_weather_time_series(archive, "2025-01-01", 30, planting, farm)["cce_lifecycle"]

    assert lifecycle[:9] == [1.0] * 9
    assert lifecycle[9] == 0.0
    assert lifecycle[22] == 0.0
    assert lifecycle[24] > 0.0


def test_weather_time_series_unknown_start(archive, planting, farm):
    """Test a start date outside the archive"""
    with pytest.raises(InsufficientWeatherCoverageError) as exc_info:
        build_weather_time_series(archive, "2030-01-01", 10, planting, farm)

    assert exc_info.value.details["archive_end"] == "2025-03-31"


def test_extend_uses_prior_year_proxy(archive, planting, farm):
    """Test horizon past the archive end with prior-year weather"""
    series, coverage = extend_weather_time_series(archive, "2025-03-20", 20, planting, farm)

    assert coverage.days == 20
    assert coverage.forecast_days == 12
    assert coverage.proxy_days == 8
    assert coverage.available_days == 12
    assert len(series["daily_precip"]) == 20

    # 1 April 2025 is served by 1 April 2024
    proxy_idx = archive.index_of("2024-04-01")
    assert series["daily_precip"][12] == archive.precipitation_sum[proxy_idx]


def test_extend_lifecycle_counts_true_days(archive, planting, farm):
    """Test that lifecycle keeps aging across the proxy boundary"""
    series, _ = extend_weather_time_series(archive, "2025-03-20", 20, planting, farm)

    lifecycle = series["cce_lifecycle"]
    # Planted 15 Oct 2024: day 156 at step 0, day 175 at step 19
    assert lifecycle[0] == 1.0
    assert lifecycle[-1] == pytest.approx(0.6)
    assert all(b <= a for a, b in zip(lifecycle, lifecycle[1:]))


def test_extend_fails_without_proxy(archive_factory, planting, farm):
    """Test that a day with neither real nor proxy weather is an error"""
    short = archive_factory(start=date(2025, 1, 1), end=date(2025, 3, 31))

    with pytest.raises(InsufficientWeatherCoverageError) as exc_info:
        extend_weather_time_series(short, "2025-03-25", 10, planting, farm)

    assert exc_info.value.details["date"] == "2025-04-01"
    assert exc_info.value.details["proxy_date"] == "2024-04-01"


def test_estimate_current_state(model, archive, history, planting, farm, today):
    """Test the 60-day replay ending today"""
    estimate = estimate_current_state(
        model, archive, history, planting, farm, historical_days=60, today=today, correction_factor=1.4
    )

    assert estimate.start_date == "2024-12-31"
    assert estimate.end_date == "2025-03-01"
    assert len(estimate.dates) == 61
    assert estimate.dates[0] == "2024-12-31"
    assert estimate.dates[-1] == "2025-03-01"
    assert set(estimate.final_state) == set(model.stocks)

    # Forage initials are scaled before the replay
    assert estimate.results.stocks["cce_forage"][0] == pytest.approx(900 * 1.4)
    assert estimate.results.stocks["cce_moisture"][0] == 60.0
    assert model.stocks["cce_forage"].initial == 900

    for value in estimate.final_state.values():
        assert value >= 0.0


def test_estimate_grazes_occupied_paddock(model, archive, history, planting, farm, today):
    """Test that grazing follows the historical occupancy schedule"""
    estimate = estimate_current_state(
        model, archive, history, planting, farm, historical_days=60, today=today, correction_factor=1.0
    )
    grazing = estimate.results.flows

    assert grazing["cce_grazing"][5] > 0
    assert grazing["ccw_grazing"][5] == 0
    assert grazing["big_grazing"][-1] > 0
    assert grazing["cce_grazing"][-1] == 0


def test_estimate_requires_history(model, archive, history, planting, farm):
    """Test that a short archive raises InsufficientHistoryError"""
    with pytest.raises(InsufficientHistoryError):
        estimate_current_state(
            model, archive, history, planting, farm, historical_days=60, today=date(2024, 2, 1)
        )

    with pytest.raises(InsufficientHistoryError) as exc_info:
        estimate_current_state(
            model, archive, history, planting, farm, historical_days=60, today=date(2026, 1, 1)
        )
    assert exc_info.value.details["archive_end"] == "2025-03-31"


def test_extract_final_state(model):
    """Test final stock values from a result"""
    results = simulate(model, steps=3)
    state = extract_final_state(results)

    assert set(state) == set(model.stocks)
    assert state["big_forage"] == results.stocks["big_forage"][-1]
