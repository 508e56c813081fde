"""
Simulation engine for stock-and-flow models
Implements forward Euler integration driven by optional time-series parameters
"""

from typing import List, Dict, Any, Mapping, Optional, Sequence, Tuple
import math
import logging

import numpy as np

from grazesim.models import Model, SimulationResults, EvaluationWarning
from grazesim.evaluator import SafeEquationEvaluator
from grazesim.exceptions import EvaluationError, ModelInvalidError
from grazesim.validation import validate_model, validate_run_config
from grazesim.types import SimulationSummaryDict

logger = logging.getLogger(__name__)

TimeSeriesParams = Mapping[str, Sequence[Optional[float]]]

SPARKLINE_CHARS = "▁▂▃▄▅▆▇█"


class StockFlowSimulator:
    """
    Stock-and-flow model executor

    Each simulator owns a private clone of the model it was given, so runs
    never mutate the caller's model and concurrent simulators never share
    state.

    Per step:
    1. Parameters are taken from the static values, overridden by any
       time-series entry for the current step index
    2. Flow rates are evaluated in declaration order; a flow may use the rate
       of any flow declared before it in the same step
    3. Stocks are advanced by forward Euler and clamped to their floor
    """

    def __init__(self, model: Model, verbose: bool = False):
        """
        Initialize simulator with a model

        Args:
            model: Model definition (cloned, never mutated)
            verbose: Enable detailed logging
        """
        self.model = model.clone()
        self.verbose = verbose
        self.evaluator = SafeEquationEvaluator()

        # Flow names feeding / draining each stock, in declaration order
        self.inflows: Dict[str, List[str]] = {name: [] for name in self.model.stocks}
        self.outflows: Dict[str, List[str]] = {name: [] for name in self.model.stocks}
        for flow_name, flow in self.model.flows.items():
            if flow.to in self.inflows:
                self.inflows[flow.to].append(flow_name)
            if flow.from_ in self.outflows:
                self.outflows[flow.from_].append(flow_name)

        if self.verbose:
            self._log_model_structure()

    def _log_model_structure(self) -> None:
        """Log model structure for debugging"""
        logger.info("=" * 60)
        logger.info(f"MODEL: {self.model.name}")
        logger.info("=" * 60)

        logger.info(f"Stocks: {len(self.model.stocks)}")
        for stock_name, stock in self.model.stocks.items():
            logger.info(f"  - {stock_name}: initial={stock.initial}, min={stock.min}")

        logger.info(f"Flows: {len(self.model.flows)}")
        for flow_name, flow in self.model.flows.items():
            logger.info(f"  - {flow_name}: {flow.from_} -> {flow.to}")
            logger.info(f"    Rate: '{flow.rate}'")

        logger.info(f"Parameters: {len(self.model.params)}")
        for param_name, value in self.model.params.items():
            logger.info(f"  - {param_name} = {value}")

        logger.info("=" * 60)

    def _validate_before_simulation(
        self, steps: int, dt: float, time_series_keys: Sequence[str]
    ) -> None:
        """
        Run validation before simulation

        Raises:
            ModelInvalidError: If validation fails, carrying every error
        """
        validation_result = validate_model(self.model, time_series_keys)
        errors = validate_run_config(steps, dt) + validation_result.errors

        if errors:
            logger.warning(f"Validation failed with {len(errors)} error(s):")
            for i, error in enumerate(errors, 1):
                logger.warning(
                    f"  {i}. [{error.code}] {error.message}"
                    + (f" (Element: {error.element_id})" if error.element_id else "")
                )
            raise ModelInvalidError(errors, model_name=self.model.name or None)

        if self.verbose:
            for warning in validation_result.warnings:
                logger.warning(f"Validation warning: {warning.message}")

    def _initialize_results(self, steps: int) -> Tuple[Dict[str, np.ndarray], Dict[str, np.ndarray]]:
        """Allocate stock (steps + 1) and flow (steps) result arrays"""
        stock_results = {name: np.zeros(steps + 1) for name in self.model.stocks}
        flow_results = {name: np.zeros(steps) for name in self.model.flows}
        return stock_results, flow_results

    def _step_params(
        self, step: int, time_series_params: TimeSeriesParams
    ) -> Dict[str, float]:
        """
        Parameter snapshot for one step

        A series that has no value for this step leaves the parameter at its
        static value (0.0 for names that only exist as time series).
        """
        params = dict(self.model.params)
        for key, series in time_series_params.items():
            if step < len(series) and series[step] is not None:
                params[key] = float(series[step])
            elif key not in params:
                params[key] = 0.0
        return params

    def _compute_flow_rates(
        self,
        context: Dict[str, float],
        step: int,
        warnings: Dict[Tuple[str, str], EvaluationWarning],
    ) -> Dict[str, float]:
        """
        Evaluate every flow in declaration order

        Each computed rate is added to the context before the next flow is
        evaluated. Failed or NaN expressions give 0; negative rates are
        clamped to 0 unless the flow allows them.
        """
        rates: Dict[str, float] = {}

        for flow_name, flow in self.model.flows.items():
            if flow.is_constant():
                rate = float(flow.rate)
            else:
                rate, error = self.evaluator.evaluate_rate(flow.rate, context, flow_name)
                if error is not None:
                    self._record_warning(warnings, flow_name, flow.rate, error, step)

            if math.isnan(rate):
                rate = 0.0
            if not flow.allow_negative and rate < 0:
                rate = 0.0

            rates[flow_name] = rate
            context[flow_name] = rate

        return rates

    @staticmethod
    def _record_warning(
        warnings: Dict[Tuple[str, str], EvaluationWarning],
        flow_name: str,
        expression: str,
        error: EvaluationError,
        step: int,
    ) -> None:
        """Aggregate repeated failures of the same flow into one warning"""
        key = (flow_name, error.code)
        if key in warnings:
            warnings[key].count += 1
        else:
            warnings[key] = EvaluationWarning(
                flow=flow_name,
                expression=expression,
                code=error.code,
                message=error.message,
                first_step=step,
            )

    def simulate(
        self,
        steps: int = 100,
        dt: float = 1.0,
        time_series_params: Optional[TimeSeriesParams] = None,
        skip_validation: bool = False,
    ) -> SimulationResults:
        """
        Run the model forward with Euler integration

        Mathematical Formula:
        stock(t + dt) = max(stock.min, stock(t) + (sum(inflows) - sum(outflows)) * dt)

        Args:
            steps: Number of Euler steps
            dt: Step size
            time_series_params: Parameter name -> per-step values (by step index)
            skip_validation: Skip model validation (use with caution)

        Returns:
            SimulationResults with steps + 1 stock samples and steps flow samples

        Raises:
            ModelInvalidError: If the model fails validation (before any step)
        """
        time_series_params = time_series_params or {}

        if not skip_validation:
            self._validate_before_simulation(steps, dt, list(time_series_params.keys()))

        if self.verbose:
            logger.info("=" * 60)
            logger.info("SIMULATION START (Euler)")
            logger.info(f"Steps: {steps}, dt={dt}")
            if time_series_params:
                logger.info(f"Time series: {', '.join(sorted(time_series_params))}")
            logger.info("=" * 60)

        for key, series in time_series_params.items():
            if len(series) < steps:
                logger.debug(
                    f"Time series '{key}' has {len(series)} values for {steps} steps; "
                    f"falling back to the static value afterwards"
                )

        stock_results, flow_results = self._initialize_results(steps)
        time_points = np.arange(steps + 1) * dt

        stock_values = {
            name: float(stock.initial) for name, stock in self.model.stocks.items()
        }
        for name, value in stock_values.items():
            stock_results[name][0] = value

        warnings: Dict[Tuple[str, str], EvaluationWarning] = {}

        for i in range(steps):
            t = float(time_points[i])

            context: Dict[str, float] = self._step_params(i, time_series_params)
            context.update(stock_values)
            context["t"] = t
            context["dt"] = dt

            rates = self._compute_flow_rates(context, i, warnings)

            # Euler update: x(t+dt) = x(t) + dx/dt * dt
            for stock_name, stock in self.model.stocks.items():
                net = sum(rates[f] for f in self.inflows[stock_name]) - sum(
                    rates[f] for f in self.outflows[stock_name]
                )
                value = stock_values[stock_name] + net * dt
                if value < stock.min:
                    value = stock.min
                stock_values[stock_name] = value
                stock_results[stock_name][i + 1] = value

            for flow_name, rate in rates.items():
                flow_results[flow_name][i] = rate

        if warnings:
            logger.warning(
                f"Simulation of '{self.model.name}' recovered from "
                f"{sum(w.count for w in warnings.values())} expression failure(s) "
                f"in {len({w.flow for w in warnings.values()})} flow(s)"
            )

        if self.verbose:
            logger.info("=" * 60)
            logger.info("SIMULATION COMPLETE")
            logger.info("Final values:")
            for stock_name, value in stock_values.items():
                logger.info(f"  {stock_name}: {value:.4f}")
            logger.info("=" * 60)
        else:
            logger.debug(f"Simulated '{self.model.name}' for {steps} steps (dt={dt})")

        return SimulationResults(
            time=time_points.tolist(),
            stocks={name: vals.tolist() for name, vals in stock_results.items()},
            flows={name: vals.tolist() for name, vals in flow_results.items()},
            warnings=list(warnings.values()),
        )


def simulate(
    model: Model,
    steps: int = 100,
    dt: float = 1.0,
    time_series_params: Optional[TimeSeriesParams] = None,
    verbose: bool = False,
) -> SimulationResults:
    """
    Convenience function to run a simulation

    Creates a StockFlowSimulator and runs the simulation in one call.

    Args:
        model: Model definition (not mutated)
        steps: Number of Euler steps
        dt: Step size
        time_series_params: Parameter name -> per-step override values
        verbose: Enable detailed logging

    Returns:
        SimulationResults

    Raises:
        ModelInvalidError: If the model fails validation
    """
    return StockFlowSimulator(model, verbose=verbose).simulate(
        steps=steps, dt=dt, time_series_params=time_series_params
    )


# ============================================================================
# Post-processing
# ============================================================================


def summarize(results: SimulationResults) -> SimulationSummaryDict:
    """
    Summary statistics for every stock

    Returns:
        Dictionary with 'duration' and per-stock initial/final/min/max/change
    """
    stocks: Dict[str, Any] = {}
    for name, values in results.stocks.items():
        if not values:
            continue
        arr = np.asarray(values, dtype=float)
        stocks[name] = {
            "initial": float(arr[0]),
            "final": float(arr[-1]),
            "min": float(arr.min()),
            "max": float(arr.max()),
            "change": float(arr[-1] - arr[0]),
        }

    return {
        "duration": results.time[-1] if results.time else 0.0,
        "stocks": stocks,
    }


def sparkline(data: Sequence[float], width: int = 40) -> str:
    """
    Compact block-character rendering of a series

    Long series are sampled every ceil(len / width) points.
    """
    if not data:
        return ""

    lo = min(data)
    hi = max(data)
    span = (hi - lo) or 1.0
    step = max(1, math.ceil(len(data) / width))

    chars = []
    for i in range(0, len(data), step):
        normalized = (data[i] - lo) / span
        chars.append(SPARKLINE_CHARS[math.floor(normalized * (len(SPARKLINE_CHARS) - 1))])
    return "".join(chars)
