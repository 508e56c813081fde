"""
Loaders for model definitions and farm records
Model and farm definitions are YAML; weather, rotation and planting records are JSON
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import json
import logging

import yaml
from pydantic import ValidationError as PydanticValidationError

from grazesim.config import Settings, get_settings
from grazesim.exceptions import DataSourceError, ModelNotFoundError
from grazesim.models import (
    FarmConfig,
    FarmData,
    Model,
    PlantingSchedule,
    RotationHistory,
    WeatherArchive,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

MODEL_SUFFIXES = (".yaml", ".yml")


# ============================================================================
# File Helpers
# ============================================================================


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise DataSourceError(
            f"Expected a mapping at the top of {path.name}",
            details={"path": str(path)},
        )
    return data


def _read_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise DataSourceError(
            f"Data file not found: {path}",
            details={"path": str(path)},
        )
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise DataSourceError(
            f"Could not parse {path.name}: {e}",
            details={"path": str(path), "line": e.lineno},
        ) from e
    if not isinstance(data, dict):
        raise DataSourceError(
            f"Expected a JSON object in {path.name}",
            details={"path": str(path)},
        )
    return data


def _parse(model_cls, data: Dict[str, Any], path: Path):
    """Validate raw data into a pydantic model, reporting the file on failure"""
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise DataSourceError(
            f"Invalid {model_cls.__name__} in {path.name}",
            details={"path": str(path), "errors": e.errors(include_url=False)},
        ) from e


# ============================================================================
# Model Definitions
# ============================================================================


def _models_dir(models_dir: Optional[PathLike]) -> Path:
    return Path(models_dir) if models_dir is not None else Path(get_settings().models_dir)


def _is_safe_model_name(name: str) -> bool:
    return bool(name) and "/" not in name and "\\" not in name and not name.startswith(".")


def load_model(name: str, models_dir: Optional[PathLike] = None) -> Model:
    """
    Load a model definition by name

    Args:
        name: File stem inside the models directory (e.g. 'grazing-rotation')
        models_dir: Directory to search; defaults to Settings.models_dir

    Returns:
        Parsed Model (structure checked by pydantic, references checked later
        by validate_model)

    Raises:
        ModelNotFoundError: If no '<name>.yaml' or '<name>.yml' exists
        DataSourceError: If the file is not a valid model definition
    """
    directory = _models_dir(models_dir)
    if not _is_safe_model_name(name):
        raise ModelNotFoundError(name, str(directory))

    for suffix in MODEL_SUFFIXES:
        path = directory / f"{name}{suffix}"
        if path.exists():
            model = _parse(Model, _read_yaml(path), path)
            if not model.name:
                model.name = name
            logger.debug(
                f"Loaded model '{model.name}' from {path} "
                f"({len(model.stocks)} stocks, {len(model.flows)} flows)"
            )
            return model

    raise ModelNotFoundError(name, str(directory))


def list_models(models_dir: Optional[PathLike] = None) -> List[str]:
    """Sorted names of every model definition in the directory"""
    directory = _models_dir(models_dir)
    if not directory.is_dir():
        logger.warning(f"Models directory does not exist: {directory}")
        return []
    return sorted({p.stem for p in directory.iterdir() if p.suffix in MODEL_SUFFIXES})


# ============================================================================
# Farm Records
# ============================================================================


def load_farm_config(path: Optional[PathLike] = None) -> FarmConfig:
    """
    Load the farm definition (paddocks, thresholds, herd)

    Defaults to Settings.farm_config, which points at the packaged farm.yaml.
    """
    config_path = Path(path) if path is not None else Path(get_settings().farm_config)
    if not config_path.exists():
        raise DataSourceError(
            f"Farm configuration not found: {config_path}",
            details={"path": str(config_path)},
        )
    farm = _parse(FarmConfig, _read_yaml(config_path), config_path)
    logger.debug(f"Loaded farm '{farm.name}' with paddocks {farm.paddock_keys}")
    return farm


def load_weather_archive(path: PathLike) -> WeatherArchive:
    """
    Load a daily weather archive

    Accepts either the daily arrays at the top level or wrapped as
    {"all": {...}}.
    """
    archive_path = Path(path)
    data = _read_json(archive_path)
    if "all" in data and isinstance(data["all"], dict):
        data = data["all"]
    archive = _parse(WeatherArchive, data, archive_path)
    if archive.time:
        logger.debug(
            f"Loaded weather archive: {len(archive)} days "
            f"({archive.time[0]} to {archive.time[-1]})"
        )
    return archive


def load_rotation_history(path: PathLike) -> RotationHistory:
    """Load the rotation history record"""
    history_path = Path(path)
    return _parse(RotationHistory, _read_json(history_path), history_path)


def load_planting_schedule(path: PathLike) -> PlantingSchedule:
    """Load the planting schedule record"""
    schedule_path = Path(path)
    return _parse(PlantingSchedule, _read_json(schedule_path), schedule_path)


def load_farm_data(settings: Optional[Settings] = None) -> FarmData:
    """
    Load everything the estimator, optimizer and projector need

    Each record is read from Settings.data_dir under its configured file name.
    A missing planting schedule is tolerated (no lifecycle series are then
    generated); every other missing file raises DataSourceError.
    """
    settings = settings or get_settings()

    model = load_model(settings.default_model, settings.models_dir)
    farm = load_farm_config(settings.farm_config)
    weather = load_weather_archive(settings.data_path(settings.weather_archive_file))
    history = load_rotation_history(settings.data_path(settings.rotation_history_file))

    planting_path = Path(settings.data_path(settings.planting_schedule_file))
    if planting_path.exists():
        planting = load_planting_schedule(planting_path)
    else:
        logger.warning(f"No planting schedule at {planting_path}; using static lifecycle values")
        planting = PlantingSchedule()

    return FarmData(
        model=model,
        farm=farm,
        weather=weather,
        history=history,
        planting=planting,
    )
