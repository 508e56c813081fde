"""
Tests for model validation
"""

from grazesim.models import Model
from grazesim.validation import (
    find_unused_stocks,
    get_validation_summary,
    validate_model,
    validate_run_config,
)


def _model(**overrides):
    data = {
        "name": "tank",
        "params": {"drain_rate": 0.1},
        "stocks": {"tank": {"initial": 100}},
        "flows": {"drain": {"from": "tank", "to": "external", "rate": "tank * drain_rate"}},
    }
    data.update(overrides)
    return Model.model_validate(data)


def test_valid_model():
    """Test that a well-formed model passes"""
    result = validate_model(_model())
    assert result.valid
    assert result.errors == []


def test_canonical_model_is_valid(model):
    """Test that the packaged grazing model passes validation"""
    result = validate_model(model)
    assert result.valid, [str(e) for e in result.errors]
    assert result.warnings == []


def test_dangling_flow_endpoint():
    """Test that a flow referencing an unknown stock is an error"""
    model = _model(flows={"drain": {"from": "tankk", "to": "external", "rate": 1}})
    result = validate_model(model)

    assert not result.valid
    assert result.errors[0].code == "invalid_flow_source"
    assert result.errors[0].element_id == "drain"
    assert "tank" in result.errors[0].suggestion


def test_undefined_variable_in_rate():
    """Test that undeclared names in a rate are reported with suggestions"""
    model = _model(flows={"drain": {"from": "tank", "to": "external", "rate": "tank * drain_rat"}})
    result = validate_model(model)

    assert not result.valid
    error = result.errors[0]
    assert error.code == "undefined_variable"
    assert error.context["undefined_var"] == "drain_rat"
    assert "drain_rate" in error.suggestion


def test_time_series_keys_are_known():
    """Test that time-series-only names count as declared"""
    model = _model(flows={"drain": {"from": "tank", "to": "external", "rate": "tank * outflow_mult"}})

    assert not validate_model(model).valid
    assert validate_model(model, ["outflow_mult"]).valid


def test_flow_may_reference_other_flow():
    """Test that flow names resolve in rate expressions"""
    model = _model(
        flows={
            "drain": {"from": "tank", "to": "external", "rate": "tank * drain_rate"},
            "refill": {"from": "external", "to": "tank", "rate": "drain / 2"},
        }
    )
    assert validate_model(model).valid


def test_syntax_and_unsafe_expressions():
    """Test that syntax errors and unsafe calls are both collected"""
    model = _model(
        flows={
            "a": {"from": "tank", "to": "external", "rate": "tank *"},
            "b": {"from": "tank", "to": "external", "rate": "open(tank)"},
        }
    )
    result = validate_model(model)

    codes = {e.code for e in result.errors}
    assert codes == {"syntax_error", "unsafe_operation"}


def test_all_errors_collected():
    """Test that validation reports every problem, not just the first"""
    model = Model.model_validate(
        {
            "name": "",
            "stocks": {},
            "flows": {"f": {"from": "x", "to": "y", "rate": "q"}},
        }
    )
    result = validate_model(model)

    codes = [e.code for e in result.errors]
    assert "missing_name" in codes
    assert "no_stocks" in codes
    assert "invalid_flow_source" in codes
    assert "invalid_flow_target" in codes
    assert "undefined_variable" in codes


def test_unused_stock_warning():
    """Test that an unconnected stock is a warning, not an error"""
    model = _model(stocks={"tank": {"initial": 100}, "spare": {"initial": 5}})
    result = validate_model(model)

    assert result.valid
    assert [w.element_id for w in result.warnings] == ["spare"]
    assert find_unused_stocks(model)[0].code == "unused_stock"


def test_run_config():
    """Test step count and step size checks"""
    assert validate_run_config(100, 1.0) == []

    codes = [e.code for e in validate_run_config(0, -1.0)]
    assert codes == ["invalid_steps", "invalid_time_step"]

    codes = [e.code for e in validate_run_config(10_000_000, 1.0)]
    assert codes == ["too_many_steps"]


def test_validation_summary():
    """Test error counts by code and element"""
    model = _model(
        flows={
            "a": {"from": "tank", "to": "external", "rate": "p + q"},
        }
    )
    summary = get_validation_summary(validate_model(model))

    assert summary["valid"] is False
    assert summary["error_count"] == 2
    assert summary["errors_by_code"] == {"undefined_variable": 2}
    assert summary["errors_by_element"] == {"a": 2}
