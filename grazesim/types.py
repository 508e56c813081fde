"""
Type definitions for the grazing simulation engine
Provides TypedDict and other type hints for structured data
"""

from typing import TypedDict, List, Dict


class StockSummaryDict(TypedDict):
    """Summary statistics for one stock series"""
    initial: float
    final: float
    min: float
    max: float
    change: float


class SimulationSummaryDict(TypedDict):
    """
    Typed dictionary for simulation summaries

    Returned by simulation.summarize().
    """
    duration: float
    stocks: Dict[str, StockSummaryDict]


class ValidationSummaryDict(TypedDict, total=False):
    """
    Typed dictionary for validation summary

    All fields are optional to match the actual validation response structure.
    """
    valid: bool
    error_count: int
    warning_count: int
    errors_by_code: Dict[str, int]
    errors_by_element: Dict[str, int]


class ProcessedWeatherDict(TypedDict):
    """
    Daily weather turned into growth drivers

    Every list is aligned 1:1 with 'dates'.
    """
    dates: List[str]
    cool_temp_mult: List[float]
    warm_temp_mult: List[float]
    precip: List[float]
    et: List[float]
    temp_avg: List[float]


class PreparedTimeSeriesDict(ProcessedWeatherDict):
    """Processed weather plus rolling moisture indicators"""
    moisture_stress: List[float]
    precip_14day: List[float]
    et_14day: List[float]
    steps: int
