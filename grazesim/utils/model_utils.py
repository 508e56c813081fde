"""
Utility functions for model manipulation
Every helper returns a modified clone; the model passed in is never mutated
"""

from typing import Dict, Mapping, Optional
import logging

from grazesim.models import Model

logger = logging.getLogger(__name__)


def with_initial_state(model: Model, state: Mapping[str, float]) -> Model:
    """
    Create a clone whose stock initial values come from a state snapshot.

    Used to continue a run from an estimated state (optimizer, projector).
    Names in the state that are not stocks of the model are ignored.

    Args:
        model: Original model
        state: Stock name -> value

    Returns:
        Modified clone of the model

    Example:
        >>> m = with_initial_state(model, {"big_forage": 1800.0})
        >>> m.stocks["big_forage"].initial
        1800.0
    """
    modified = model.clone()
    for stock_name, value in state.items():
        stock = modified.stocks.get(stock_name)
        if stock is not None:
            stock.initial = float(value)
    return modified


def with_params(model: Model, params: Mapping[str, float]) -> Model:
    """
    Create a clone with parameter values added or replaced.

    Args:
        model: Original model
        params: Parameter name -> new value

    Returns:
        Modified clone of the model
    """
    modified = model.clone()
    for name, value in params.items():
        modified.params[name] = float(value)
    return modified


def scale_initials(model: Model, suffix: str, factor: float) -> Model:
    """
    Create a clone with the initial value of every stock ending in `suffix`
    multiplied by `factor`.
    """
    modified = model.clone()
    for stock_name, stock in modified.stocks.items():
        if stock_name.endswith(suffix):
            stock.initial *= factor
    logger.debug(f"Scaled '*{suffix}' initial values by {factor}")
    return modified


def prepare_run_model(
    model: Model,
    state: Optional[Mapping[str, float]] = None,
    params: Optional[Dict[str, float]] = None,
) -> Model:
    """Clone once and apply both an initial state and parameter overrides"""
    prepared = with_initial_state(model, state) if state else model.clone()
    for name, value in (params or {}).items():
        prepared.params[name] = float(value)
    return prepared
