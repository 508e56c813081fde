"""
Tests for planting windows, scenarios and transition gaps
"""

from datetime import date

import pytest
from grazesim.models import PlantingSchedule
from grazesim.planting import (
    analyze_cool_season_window,
    analyze_transition_gap,
    analyze_warm_season_window,
    estimate_soil_temp,
    gap_severity,
    get_planting_date,
    get_planting_dates,
    get_planting_recommendations,
    paddock_planting_status,
    project_planting_scenarios,
)


def test_estimate_soil_temp_lag_and_damping():
    """Test that soil follows air four days late with damped swings"""
    air = [63.0] * 5 + [73.0] * 5
    soil = estimate_soil_temp(air)

    assert soil[8] == pytest.approx(63.0)
    assert soil[9] == pytest.approx(69.0)
    assert estimate_soil_temp([]) == []


def test_get_planting_date(planting):
    """Test planted date preferred over planned, per season"""
    assert get_planting_date(planting, "cce", "cool_season") == date(2024, 10, 15)
    assert get_planting_date(planting, "hog", "cool_season") == date(2024, 11, 1)
    assert get_planting_date(planting, "cce", "warm_season") == date(2025, 5, 20)
    assert get_planting_date(planting, "south", "cool_season") is None
    assert get_planting_date(planting, "ccw", "warm_season") is None


def test_get_planting_date_as_of():
    """Test the seeding in effect on a day versus the latest on record"""
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

    assert get_planting_dates(planting, "cce", "cool_season") == [date(2024, 10, 15), date(2025, 10, 20)]
    assert get_planting_date(planting, "cce", "cool_season") == date(2025, 10, 20)
    assert get_planting_date(planting, "cce", "cool_season", as_of=date(2025, 3, 1)) == date(2024, 10, 15)
    assert get_planting_date(planting, "cce", "cool_season", as_of=date(2025, 10, 20)) == date(2025, 10, 20)
    # Before any seeding, the first upcoming one applies
    assert get_planting_date(planting, "cce", "cool_season", as_of=date(2024, 9, 1)) == date(2024, 10, 15)


def test_paddock_planting_status_uses_current_crop(farm, today):
    """Test that a planned reseeding does not hide the standing crop"""
    planting = PlantingSchedule.model_validate(
        {
            "paddocks": {
                "cce": {
                    "cool_season": {
                        "2024": {"planted": "2024-10-15", "species": "Rye"},
                        "2025": {"planned": "2025-10-20"},
                    }
                }
            }
        }
    )
    status = paddock_planting_status(planting, farm, "cool_season", today)[0]

    assert status["plant_date"] == "2024-10-15"
    assert status["is_planted"] is True
    assert status["species"] == "Rye"


def test_get_planting_date_rejects_unknown_season(planting):
    """Test season key validation"""
    with pytest.raises(ValueError):
        get_planting_date(planting, "cce", "spring")


def test_cool_season_window(archive):
    """Test autumn cooldown and planting-window rain per year"""
    analysis = analyze_cool_season_window(archive)

    # Only 2024 has October data
    assert [y["year"] for y in analysis["years"]] == [2024]
    year = analysis["years"][0]
    assert year["cooldown_date"].startswith("2024-10")
    assert year["first_frost"] is None
    assert year["window_precip"] > 0
    assert analysis["averages"]["cooldown_date_approx"].startswith("Oct")
    assert analysis["averages"]["window_precip_mm"] == year["window_precip"]


def test_warm_season_window(archive):
    """Test spring soil warming per year"""
    analysis = analyze_warm_season_window(archive)

    assert [y["year"] for y in analysis["years"]] == [2024]
    assert analysis["years"][0]["soil_warm_date"].startswith("2024-04")
    assert analysis["averages"]["soil_warm_date_approx"].startswith("Apr")


def test_window_analysis_empty_archive(archive_factory):
    """Test averages when no year qualifies"""
    winter = archive_factory(start=date(2025, 1, 1), end=date(2025, 2, 1))
    analysis = analyze_cool_season_window(winter)

    assert analysis["years"] == []
    assert analysis["averages"]["cooldown_date_approx"] == "N/A"
    assert analysis["averages"]["window_precip_mm"] == 0.0


def test_project_planting_scenarios(archive):
    """Test days to grazeable, peak and weekly multipliers for a seeding date"""
    scenarios = project_planting_scenarios("cool", ["2024-10-20"], archive, projection_days=120)

    assert len(scenarios) == 1
    scenario = scenarios[0]
    assert scenario["days_to_grazeable"] == 31
    assert scenario["grazeable_date"] == "2024-11-20"
    assert scenario["peak_start_day"] in (66, 67)
    assert set(scenario["week_multipliers"]) == {"week6", "week8", "week10", "week12"}
    assert all(v is not None for v in scenario["week_multipliers"].values())
    assert len(scenario["lifecycle"]) == 120
    assert len(scenario["combined"]) == 120


def test_project_planting_scenarios_fallback_temperature(archive):
    """Test the fixed multiplier when neither real nor proxy weather exists"""
    scenario = project_planting_scenarios("warm", ["2030-06-01"], archive, projection_days=60)[0]

    for lifecycle, combined in zip(scenario["lifecycle"], scenario["combined"]):
        assert combined == pytest.approx(lifecycle * 0.5)
    assert scenario["week_multipliers"]["week12"] is None


def test_project_planting_scenarios_rejects_unknown_season(archive):
    """Test season validation"""
    with pytest.raises(ValueError):
        project_planting_scenarios("spring", ["2024-10-20"], archive)


def test_gap_severity():
    """Test severity bands"""
    assert gap_severity(None) == "unknown"
    assert gap_severity(-5) == "none"
    assert gap_severity(30) == "manageable"
    assert gap_severity(45) == "significant"
    assert gap_severity(61) == "critical"


def test_transition_gap(planting, farm):
    """Test days between winter-mix death and summer-mix readiness"""
    gaps = {g["paddock"]: g for g in analyze_transition_gap(planting, farm)}

    cce = gaps["cce"]
    assert cce["cool_decline_start"] == "2025-03-27"
    assert cce["cool_death"] == "2025-04-26"
    assert cce["warm_graze_ready"] == "2025-06-29"
    assert cce["gap_days"] == 64
    assert cce["gap_severity"] == "critical"

    assert gaps["ccw"]["gap_days"] is None
    assert gaps["ccw"]["gap_severity"] == "unknown"
    assert "error" in gaps["south"]


def test_paddock_planting_status(planting, farm, today):
    """Test planted, planned and missing records"""
    status = {s["paddock"]: s for s in paddock_planting_status(planting, farm, "cool_season", today)}

    assert status["cce"]["is_planted"] is True
    assert status["cce"]["days_since_planting"] == 137
    assert status["cce"]["species"] == "Cereal rye + crimson clover"
    assert status["hog"]["is_planted"] is False
    assert status["hog"]["is_planned"] is True
    assert status["south"]["plant_date"] is None
    assert status["south"]["species"] == "Unknown"


def test_planting_recommendations_next_season(archive, planting, farm, today):
    """Test that spring reports look ahead to the warm season"""
    report = get_planting_recommendations(archive, planting, farm, season="next", today=today)

    assert report["season"] == "warm"
    assert report["season_key"] == "warm_season"
    assert report["candidate_dates"] == ["2025-05-15", "2025-06-01", "2025-06-15"]
    assert len(report["scenarios"]) == 3
    assert len(report["paddock_status"]) == 5
    assert len(report["transition_gap"]) == 5


def test_planting_recommendations_cool_and_invalid(archive, planting, farm):
    """Test explicit cool season and season validation"""
    report = get_planting_recommendations(archive, planting, farm, season="next", today=date(2024, 9, 1))
    assert report["season"] == "cool"
    assert report["candidate_dates"][0] == "2024-10-20"

    with pytest.raises(ValueError):
        get_planting_recommendations(archive, planting, farm, season="summer")
