"""
Pydantic models for the grazing simulation engine
Defines data structures for model definitions, simulation results, farm
records and API payloads
"""

from datetime import date, datetime
from typing import List, Dict, Optional, Any, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator

from grazesim.exceptions import ValidationError, UnknownPaddockError


# ============================================================================
# Model Definition
# ============================================================================


class StockDef(BaseModel):
    """
    An accumulating quantity (forage mass, soil moisture, organic matter)

    Attributes:
        initial: Value at t=0
        min: Floor the stock is clamped to after every update
        description: Optional free text
    """

    initial: float = 0.0
    min: float = 0.0
    description: Optional[str] = None


class FlowDef(BaseModel):
    """
    A rate moving quantity between two stocks (or the outside world)

    Attributes:
        from_: Source stock name or 'external'
        to: Target stock name or 'external'
        rate: Constant rate or an expression string
        allow_negative: Keep negative computed rates instead of clamping to 0
        description: Optional free text
    """

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(..., alias="from")
    to: str
    rate: Union[float, str] = 0.0
    allow_negative: bool = Field(False, alias="allowNegative")
    description: Optional[str] = None

    @field_validator("rate")
    @classmethod
    def strip_rate(cls, v: Union[float, str]) -> Union[float, str]:
        """Normalize expression whitespace"""
        if isinstance(v, str):
            return v.strip()
        return v

    def is_constant(self) -> bool:
        """Check if the flow rate is a plain number"""
        return not isinstance(self.rate, str)


class Model(BaseModel):
    """
    A named stock-and-flow simulation model definition

    Flow declaration order is significant: flows are evaluated in the order
    they appear, so a later flow may use an earlier flow's rate from the same
    step.
    """

    name: str = ""
    description: str = ""
    params: Dict[str, float] = {}
    stocks: Dict[str, StockDef] = {}
    flows: Dict[str, FlowDef] = {}

    def clone(self) -> "Model":
        """Return an independent deep copy safe to mutate for one run"""
        return self.model_copy(deep=True)

    def stocks_with_suffix(self, suffix: str) -> List[str]:
        """Stock names ending in the given suffix (e.g. '_forage')"""
        return [name for name in self.stocks if name.endswith(suffix)]


# ============================================================================
# Simulation Results
# ============================================================================


class EvaluationWarning(BaseModel):
    """
    A flow expression that failed during a run and was treated as rate 0

    Repeated failures of the same flow are aggregated into one warning.
    """

    flow: str
    expression: str
    code: str
    message: str
    first_step: int
    count: int = 1


class SimulationResults(BaseModel):
    """
    Time series produced by one simulation run

    Attributes:
        time: Time of every recorded sample (steps + 1 entries)
        stocks: Stock name -> values including the initial sample (steps + 1)
        flows: Flow name -> rate used in each step (steps entries)
        warnings: Recovered expression failures
    """

    time: List[float] = []
    stocks: Dict[str, List[float]] = {}
    flows: Dict[str, List[float]] = {}
    warnings: List[EvaluationWarning] = []


# ============================================================================
# Weather Archive
# ============================================================================


class WeatherArchive(BaseModel):
    """
    Daily weather as parallel arrays (Open-Meteo daily layout)

    Dates are ISO strings, ascending and without gaps. Individual values may be
    null; consumers decide the substitute.
    """

    time: List[str] = []
    precipitation_sum: List[Optional[float]] = []
    temperature_2m_max: List[Optional[float]] = []
    temperature_2m_min: List[Optional[float]] = []
    et0_fao_evapotranspiration: List[Optional[float]] = []

    _index: Dict[str, int] = PrivateAttr(default_factory=dict)

    @model_validator(mode="after")
    def check_parallel_arrays(self) -> "WeatherArchive":
        """All series must have one value per date"""
        n = len(self.time)
        for field in (
            "precipitation_sum",
            "temperature_2m_max",
            "temperature_2m_min",
            "et0_fao_evapotranspiration",
        ):
            if len(getattr(self, field)) != n:
                raise ValueError(
                    f"Weather series '{field}' has {len(getattr(self, field))} values "
                    f"but there are {n} dates"
                )
        self._index = {day: i for i, day in enumerate(self.time)}
        return self

    def __len__(self) -> int:
        return len(self.time)

    def index_of(self, day: Union[str, date]) -> Optional[int]:
        """Index of an ISO date in the archive, or None"""
        key = day.isoformat() if isinstance(day, date) else day
        return self._index.get(key)

    def slice(self, start: int, stop: int) -> "WeatherArchive":
        """Sub-archive for indices [start, stop)"""
        return WeatherArchive(
            time=self.time[start:stop],
            precipitation_sum=self.precipitation_sum[start:stop],
            temperature_2m_max=self.temperature_2m_max[start:stop],
            temperature_2m_min=self.temperature_2m_min[start:stop],
            et0_fao_evapotranspiration=self.et0_fao_evapotranspiration[start:stop],
        )


# ============================================================================
# Rotation History
# ============================================================================


class RotationRecord(BaseModel):
    """One stint of the herd on a paddock; end is None while in progress"""

    model_config = ConfigDict(populate_by_name=True)

    paddock: str
    name: Optional[str] = None
    start: date
    end: Optional[date] = None
    days: Optional[int] = None
    hay_fed: bool = Field(False, alias="hayFed")
    notes: Optional[str] = None


class CurrentPaddock(BaseModel):
    """Pointer to the paddock the herd is on now"""

    id: str
    name: Optional[str] = None
    since: date


class RotationHistory(BaseModel):
    """
    Persisted grazing record, consumed read-only

    Attributes:
        rotations: Ordered rotation stints
        current_paddock: Where the herd is now
        events: Free-form event log
        metadata: Free-form metadata
    """

    model_config = ConfigDict(populate_by_name=True)

    rotations: List[RotationRecord] = []
    current_paddock: CurrentPaddock = Field(..., alias="currentPaddock")
    events: List[Dict[str, Any]] = []
    metadata: Dict[str, Any] = {}


# ============================================================================
# Planting Schedule
# ============================================================================


class PlantingRecord(BaseModel):
    """A season's seeding for one paddock in one year"""

    model_config = ConfigDict(extra="allow")

    planted: Optional[date] = None
    planned: Optional[date] = None
    species: Optional[str] = None
    notes: Optional[str] = None


class PaddockPlanting(BaseModel):
    """Planting records per season, keyed by year"""

    cool_season: Dict[str, PlantingRecord] = {}
    warm_season: Dict[str, PlantingRecord] = {}


class PlantingSchedule(BaseModel):
    """Planting records for every paddock"""

    paddocks: Dict[str, PaddockPlanting] = {}


# ============================================================================
# Farm Configuration
# ============================================================================


class Paddock(BaseModel):
    """
    A fenced grazing parcel

    Attributes:
        id: Numeric id used by the current_paddock parameter
        name: Display name
        acres: Area (informational; the model carries its own per-paddock acres)
    """

    id: int
    name: str
    acres: Optional[float] = None
    notes: Optional[str] = None


class ForageThresholds(BaseModel):
    """Forage mass thresholds in lb/acre"""

    critical: float = 500.0
    low: float = 1000.0
    marginal: float = 1500.0
    healthy: float = 2000.0


class HerdConfig(BaseModel):
    """Herd description used for defaults"""

    average_weight: float = 557.0
    count: int = 14


class FarmConfig(BaseModel):
    """
    The configured set of paddocks, thresholds and herd

    Paddock order is significant: candidate generation and rotation cycling
    follow it.
    """

    name: str = ""
    paddocks: Dict[str, Paddock]
    thresholds: ForageThresholds = ForageThresholds()
    herd: HerdConfig = HerdConfig()

    @property
    def paddock_keys(self) -> List[str]:
        """Paddock keys in configuration order"""
        return list(self.paddocks.keys())

    def get_paddock(self, key: str) -> Paddock:
        """
        Look up a paddock by key

        Raises:
            UnknownPaddockError: If the key is not configured
        """
        if key not in self.paddocks:
            raise UnknownPaddockError(key, self.paddock_keys)
        return self.paddocks[key]

    def key_for_id(self, numeric_id: int) -> Optional[str]:
        """Paddock key for a numeric id, or None"""
        for key, paddock in self.paddocks.items():
            if paddock.id == numeric_id:
                return key
        return None


class FarmData(BaseModel):
    """Everything the estimator, optimizer and projector read"""

    model: Model
    farm: FarmConfig
    weather: WeatherArchive
    history: RotationHistory
    planting: PlantingSchedule = PlantingSchedule()


# ============================================================================
# State Estimation and Projection
# ============================================================================


class WeatherCoverage(BaseModel):
    """How a forward horizon was covered by real versus proxy weather"""

    start_date: str
    days: int
    available_days: int
    forecast_days: int
    proxy_days: int


class StateEstimate(BaseModel):
    """
    Reconstructed current stock values

    Attributes:
        final_state: Stock name -> estimated value today
        dates: Dates of the replayed window (one per stock sample)
        start_date: First day of the window
        end_date: Day the estimate applies to
        estimated_at: Wall-clock time the estimate was made
        results: Full historical simulation
    """

    final_state: Dict[str, float]
    dates: List[str]
    start_date: str
    end_date: str
    estimated_at: datetime
    results: SimulationResults


class ScenarioResult(BaseModel):
    """One grazing policy simulated forward from the estimated state"""

    name: str
    hay_factor: float
    schedule: List[float]
    forage: List[float]
    moisture: List[float]
    start_forage: float
    end_forage: float
    min_forage: float
    max_forage: float
    milestones: Dict[str, Optional[int]]
    end_state: Dict[str, float]


class Projection(BaseModel):
    """Three scenarios sharing the same starting state and weather"""

    focus_paddock: str
    focus_name: str
    days: int
    current_paddock: str
    remaining_days: int
    starting_state: Dict[str, float]
    weather: WeatherCoverage
    scenarios: List[ScenarioResult]


# ============================================================================
# Rotation Optimization
# ============================================================================


class Move(BaseModel):
    """One stint of a candidate plan"""

    paddock_key: str
    numeric_id: int
    name: str
    duration: int


class Candidate(BaseModel):
    """An ordered grazing plan evaluated by the optimizer"""

    moves: List[Move]
    total_days: int


# Priority order of ScoreBreakdown.sort_key()
RANKING_CRITERIA = (
    "fewest hay_days",
    "fewest hay_consumption_days",
    "highest min_end_forage",
    "highest total_end_forage",
)


class ScoreBreakdown(BaseModel):
    """
    Outcome metrics for one simulated candidate

    Attributes:
        score: Weighted scalar for display only; ranking uses sort_key()
        hay_days: Days the grazed paddock was below the critical threshold
        hay_consumption_days: Days the grazed paddock was low but not critical
        min_end_forage: Lowest end-of-horizon forage over all paddocks
        total_end_forage: Sum of end-of-horizon forage over all paddocks
        per_paddock: End-of-horizon forage by paddock key
    """

    score: float
    hay_days: int
    hay_consumption_days: int
    min_end_forage: float
    total_end_forage: float
    per_paddock: Dict[str, float] = {}

    def sort_key(self) -> Tuple[int, int, float, float]:
        """Lexicographic ranking key, larger is better"""
        return (
            -self.hay_days,
            -self.hay_consumption_days,
            self.min_end_forage,
            self.total_end_forage,
        )


class RankedCandidate(BaseModel):
    """A candidate with its score and final rank (1 = best)"""

    candidate: Candidate
    score: ScoreBreakdown
    rank: int = 0
    results: Optional[SimulationResults] = None


class OptimizationResult(BaseModel):
    """
    Ranked candidates plus the recommended next paddock

    Candidates are ordered by ScoreBreakdown.sort_key(), the criteria listed in
    ranked_by, compared in turn. The scalar ScoreBreakdown.score is not the
    ranking, so a better-ranked candidate can show a lower score: one extra hay
    day outweighs any amount of end forage.

    Attributes:
        ranked: Candidates, best first (rank 1)
        ranked_by: Ranking criteria in priority order
        best_move: First paddock of the rank-1 candidate
        candidate_count: Number of candidates simulated
        elapsed_ms: Wall-clock time of the search
    """

    ranked: List[RankedCandidate]
    ranked_by: List[str] = Field(default_factory=lambda: list(RANKING_CRITERIA))
    best_move: Optional[str] = None
    candidate_count: int
    elapsed_ms: float


# ============================================================================
# API Payloads
# ============================================================================


class SimulationRequest(BaseModel):
    """
    Simulation request payload

    Either an inline model or the name of a stored model must be given.
    """

    model_config = ConfigDict(protected_namespaces=())

    model: Optional[Model] = None
    model_name: Optional[str] = None
    steps: int = Field(100, gt=0, description="Number of Euler steps")
    dt: float = Field(1.0, gt=0, description="Time step must be greater than 0")
    params: Dict[str, float] = {}
    time_series: Dict[str, List[float]] = {}
    verbose: bool = False


class SimulationResponse(BaseModel):
    """Simulation execution result"""

    success: bool
    time: List[float] = []
    stocks: Dict[str, List[float]] = {}
    flows: Dict[str, List[float]] = {}
    warnings: List[EvaluationWarning] = []
    summary: Optional[Dict[str, Any]] = None


class ValidationRequest(BaseModel):
    """Model validation payload"""

    model: Model
    time_series_keys: List[str] = []


class ValidationResponse(BaseModel):
    """
    Model validation result

    Attributes:
        valid: Whether the model is valid
        errors: List of validation errors
        warnings: List of validation warnings
        summary: Summary statistics (if valid)
    """

    valid: bool
    errors: List[ValidationError] = []
    warnings: List[ValidationError] = []
    summary: Optional[Dict[str, Any]] = None


class OptimizeRequest(BaseModel):
    """Rotation optimization payload"""

    moves_ahead: Optional[int] = Field(None, ge=1, le=2)
    days_per_rotation: Optional[int] = Field(None, gt=0)
    min_rest_days: Optional[int] = Field(None, ge=0)
    include_results: bool = False


class ProjectRequest(BaseModel):
    """Scenario projection payload"""

    paddock: Optional[str] = None
    days: Optional[int] = Field(None, gt=0, le=366)
    hay_factor: Optional[float] = Field(None, ge=0.0, le=1.0)
