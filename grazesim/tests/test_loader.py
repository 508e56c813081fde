"""
Tests for model and farm record loading
"""

import json

import pytest
from grazesim.config import Settings
from grazesim.exceptions import DataSourceError, ModelNotFoundError
from grazesim.loader import (
    list_models,
    load_farm_config,
    load_farm_data,
    load_model,
    load_planting_schedule,
    load_rotation_history,
    load_weather_archive,
)

WEATHER = {
    "time": ["2025-01-01", "2025-01-02"],
    "precipitation_sum": [1.0, None],
    "temperature_2m_max": [60.0, 62.0],
    "temperature_2m_min": [40.0, 41.0],
    "et0_fao_evapotranspiration": [1.2, 1.3],
}

HISTORY = {
    "rotations": [{"paddock": "cce", "start": "2025-01-01", "end": "2025-01-14", "hayFed": True}],
    "currentPaddock": {"id": "ccw", "name": "Cedar Crest West", "since": "2025-01-14"},
}

PLANTING = {
    "paddocks": {
        "cce": {"cool_season": {"2024": {"planted": "2024-10-15", "species": "Rye"}}},
    }
}


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_load_packaged_model(model):
    """Test the shipped grazing model"""
    assert model.name == "grazing-rotation"
    assert len(model.stocks) == 15
    assert len(model.flows) == 40
    assert model.stocks_with_suffix("_forage") == [
        "cce_forage",
        "ccw_forage",
        "big_forage",
        "hog_forage",
        "south_forage",
    ]
    assert model.flows["big_grazing"].from_ == "big_forage"


def test_load_model_defaults_name(tmp_path):
    """Test that a nameless model takes its file name"""
    (tmp_path / "tank.yml").write_text(
        "stocks:\n  tank:\n    initial: 10\nflows:\n  out:\n    from: tank\n    to: external\n    rate: 1\n",
        encoding="utf-8",
    )
    model = load_model("tank", tmp_path)

    assert model.name == "tank"
    assert model.flows["out"].rate == 1.0
    assert list_models(tmp_path) == ["tank"]


def test_load_model_not_found(tmp_path):
    """Test missing and unsafe model names"""
    with pytest.raises(ModelNotFoundError):
        load_model("missing", tmp_path)

    with pytest.raises(ModelNotFoundError):
        load_model("../secrets", tmp_path)


def test_load_model_invalid_file(tmp_path):
    """Test a model file that is not a mapping or has bad fields"""
    (tmp_path / "list.yaml").write_text("- a\n- b\n", encoding="utf-8")
    (tmp_path / "bad.yaml").write_text("stocks:\n  tank:\n    initial: lots\n", encoding="utf-8")

    with pytest.raises(DataSourceError):
        load_model("list", tmp_path)

    with pytest.raises(DataSourceError) as exc_info:
        load_model("bad", tmp_path)
    assert exc_info.value.details["errors"]


def test_list_models_missing_directory(tmp_path):
    """Test listing a directory that does not exist"""
    assert list_models(tmp_path / "nowhere") == []


def test_load_farm_config(farm):
    """Test the packaged farm definition"""
    assert farm.paddock_keys == ["cce", "ccw", "big", "hog", "south"]
    assert farm.get_paddock("big").id == 3
    assert farm.key_for_id(5) == "south"
    assert farm.key_for_id(9) is None
    assert farm.thresholds.critical == 500


def test_load_farm_config_missing(tmp_path):
    """Test a missing farm definition"""
    with pytest.raises(DataSourceError):
        load_farm_config(tmp_path / "farm.yaml")


def test_load_weather_archive_plain_and_wrapped(tmp_path):
    """Test both top-level arrays and the 'all' wrapper"""
    plain = load_weather_archive(_write(tmp_path / "plain.json", WEATHER))
    wrapped = load_weather_archive(_write(tmp_path / "wrapped.json", {"all": WEATHER}))

    assert len(plain) == 2
    assert wrapped.time == plain.time
    assert wrapped.precipitation_sum == [1.0, None]
    assert wrapped.index_of("2025-01-02") == 1


def test_load_weather_archive_errors(tmp_path):
    """Test missing, malformed and ragged archives"""
    with pytest.raises(DataSourceError):
        load_weather_archive(tmp_path / "missing.json")

    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(DataSourceError):
        load_weather_archive(tmp_path / "broken.json")

    ragged = dict(WEATHER, precipitation_sum=[1.0])
    with pytest.raises(DataSourceError):
        load_weather_archive(_write(tmp_path / "ragged.json", ragged))


def test_load_rotation_history(tmp_path):
    """Test aliases in the rotation record"""
    history = load_rotation_history(_write(tmp_path / "history.json", HISTORY))

    assert history.current_paddock.id == "ccw"
    assert history.rotations[0].hay_fed is True
    assert history.rotations[0].end.isoformat() == "2025-01-14"


def test_load_planting_schedule(tmp_path):
    """Test seasonal planting records"""
    planting = load_planting_schedule(_write(tmp_path / "planting.json", PLANTING))

    assert planting.paddocks["cce"].cool_season["2024"].species == "Rye"
    assert planting.paddocks["cce"].warm_season == {}


def test_load_farm_data(tmp_path):
    """Test loading every record from a data directory"""
    _write(tmp_path / "weather-archive.json", WEATHER)
    _write(tmp_path / "rotation-history.json", HISTORY)
    _write(tmp_path / "planting-schedule.json", PLANTING)

    data = load_farm_data(Settings(data_dir=str(tmp_path)))

    assert data.model.name == "grazing-rotation"
    assert len(data.weather) == 2
    assert data.history.current_paddock.id == "ccw"
    assert "cce" in data.planting.paddocks


def test_load_farm_data_without_planting(tmp_path):
    """Test that a missing planting schedule falls back to an empty one"""
    _write(tmp_path / "weather-archive.json", WEATHER)
    _write(tmp_path / "rotation-history.json", HISTORY)

    data = load_farm_data(Settings(data_dir=str(tmp_path)))

    assert data.planting.paddocks == {}


def test_load_farm_data_missing_history(tmp_path):
    """Test that a missing rotation history is an error"""
    _write(tmp_path / "weather-archive.json", WEATHER)

    with pytest.raises(DataSourceError):
        load_farm_data(Settings(data_dir=str(tmp_path)))
