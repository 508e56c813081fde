"""
Validation layer for stock-and-flow models
Validates model structure, flow endpoints and rate expression references
"""

from typing import List, Iterable, Optional, Set, Tuple
from pydantic import BaseModel
import ast

from grazesim.models import Model
from grazesim.evaluator import (
    extract_variable_references,
    normalize_expression,
    validate_expression_ast,
)
from grazesim.exceptions import ValidationError
from grazesim.constants import EXTERNAL, RESERVED_NAMES, MAX_SIMULATION_STEPS
from grazesim.types import ValidationSummaryDict


class ValidationResult(BaseModel):
    """Result of validation"""

    valid: bool
    errors: List[ValidationError]
    warnings: List[ValidationError] = []


# ============================================================================
# Run Configuration Validation
# ============================================================================


def validate_run_config(steps: int, dt: float) -> List[ValidationError]:
    """
    Validate simulation run settings

    Rules:
    - steps > 0 and below MAX_SIMULATION_STEPS
    - dt > 0
    """
    errors: List[ValidationError] = []

    if steps <= 0:
        errors.append(
            ValidationError(
                code="invalid_steps",
                message=f"Number of steps must be greater than 0, got {steps}",
                field="steps",
                suggestion="Set steps to a positive integer (e.g., 100)",
            )
        )
    elif steps > MAX_SIMULATION_STEPS:
        errors.append(
            ValidationError(
                code="too_many_steps",
                message=f"Simulation would require {steps} steps, exceeding maximum of {MAX_SIMULATION_STEPS:,}",
                field="steps",
                suggestion="Reduce the number of steps",
            )
        )

    if dt <= 0:
        errors.append(
            ValidationError(
                code="invalid_time_step",
                message=f"Time step must be greater than 0, got {dt}",
                field="dt",
                suggestion="Set dt to a positive value (e.g., 1.0)",
            )
        )

    return errors


# ============================================================================
# Structure Validation
# ============================================================================


def validate_structure(model: Model) -> List[ValidationError]:
    """
    Validate model structure

    Rules:
    - Model has a name
    - At least one stock
    - At least one flow
    - Every flow's from/to is 'external' or a stock
    """
    errors: List[ValidationError] = []

    if not model.name or not model.name.strip():
        errors.append(
            ValidationError(
                code="missing_name",
                message="Model must have a name",
                field="name",
                suggestion="Add a 'name' entry to the model definition",
            )
        )

    if not model.stocks:
        errors.append(
            ValidationError(
                code="no_stocks",
                message="Model must define at least one stock",
                field="stocks",
            )
        )

    if not model.flows:
        errors.append(
            ValidationError(
                code="no_flows",
                message="Model must define at least one flow",
                field="flows",
            )
        )

    valid_endpoints = set(model.stocks.keys()) | {EXTERNAL}
    for flow_name, flow in model.flows.items():
        for field, endpoint, code in (
            ("from", flow.from_, "invalid_flow_source"),
            ("to", flow.to, "invalid_flow_target"),
        ):
            if endpoint not in valid_endpoints:
                similar = _find_similar_names(endpoint, valid_endpoints)
                suggestion = f"Use '{EXTERNAL}' or one of the declared stocks"
                if similar:
                    suggestion += f". Did you mean: {', '.join(similar[:3])}?"
                errors.append(
                    ValidationError(
                        code=code,
                        message=f"Flow '{flow_name}' references unknown stock '{endpoint}' in '{field}'",
                        element_id=flow_name,
                        field=field,
                        suggestion=suggestion,
                    )
                )

    return errors


# ============================================================================
# Expression Validation
# ============================================================================


def validate_expression_syntax(expression: str) -> Tuple[bool, Optional[str]]:
    """Validate expression syntax by parsing AST"""
    try:
        ast.parse(normalize_expression(expression), mode="eval")
        return True, None
    except SyntaxError as e:
        return False, str(e)


def validate_expressions(
    model: Model, time_series_keys: Iterable[str] = ()
) -> List[ValidationError]:
    """
    Validate flow rate expressions

    Rules:
    - Valid syntax
    - Only safe operations allowed
    - Every referenced identifier resolves to a stock, param, flow,
      time-series key or reserved name
    """
    errors: List[ValidationError] = []

    known: Set[str] = (
        set(model.stocks.keys())
        | set(model.params.keys())
        | set(model.flows.keys())
        | set(time_series_keys)
    )

    for flow_name, flow in model.flows.items():
        if flow.is_constant():
            continue

        expression = flow.rate
        if expression == "":
            errors.append(
                ValidationError(
                    code="empty_rate",
                    message=f"Flow '{flow_name}' has an empty rate expression",
                    element_id=flow_name,
                    field="rate",
                    suggestion="Give the flow a numeric rate or an expression",
                )
            )
            continue

        syntax_valid, syntax_error = validate_expression_syntax(expression)
        if not syntax_valid:
            errors.append(
                ValidationError(
                    code="syntax_error",
                    message=f"Syntax error in rate '{expression}': {syntax_error}",
                    element_id=flow_name,
                    field="rate",
                    suggestion="Check for balanced parentheses, valid operators, and proper syntax",
                )
            )
            continue

        tree = ast.parse(normalize_expression(expression), mode="eval")
        ast_valid, ast_error = validate_expression_ast(tree)
        if not ast_valid:
            errors.append(
                ValidationError(
                    code="unsafe_operation",
                    message=f"Unsafe operation in rate '{expression}': {ast_error}",
                    element_id=flow_name,
                    field="rate",
                    suggestion="Use only allowed operations and functions",
                )
            )
            continue

        for var_name in sorted(extract_variable_references(tree)):
            if var_name in known or var_name in RESERVED_NAMES:
                continue

            similar = _find_similar_names(var_name, known)
            suggestion = f"Declare '{var_name}' as a stock, parameter or flow"
            if similar:
                suggestion += f". Did you mean: {', '.join(similar[:3])}?"

            errors.append(
                ValidationError(
                    code="undefined_variable",
                    message=f"Rate of '{flow_name}' references undefined variable '{var_name}'",
                    element_id=flow_name,
                    field="rate",
                    suggestion=suggestion,
                    context={"expression": expression, "undefined_var": var_name},
                )
            )

    return errors


def _find_similar_names(name: str, candidates: Set[str]) -> List[str]:
    """Find similar names for typo suggestions"""
    name_lower = name.lower()
    similar = []

    for candidate in sorted(candidates):
        candidate_lower = candidate.lower()
        # Exact case-insensitive match
        if name_lower == candidate_lower:
            similar.insert(0, candidate)
        # Substring match
        elif name_lower in candidate_lower or candidate_lower in name_lower:
            similar.append(candidate)
        # Simple edit distance approximation
        elif abs(len(name) - len(candidate)) <= 2:
            common = sum(1 for a, b in zip(name_lower, candidate_lower) if a == b)
            if common >= len(name_lower) * 0.6:
                similar.append(candidate)

    return similar[:5]


# ============================================================================
# Warnings
# ============================================================================


def find_unused_stocks(model: Model) -> List[ValidationError]:
    """Stocks that no flow fills or drains (warnings only)"""
    touched = set()
    for flow in model.flows.values():
        touched.add(flow.from_)
        touched.add(flow.to)

    return [
        ValidationError(
            code="unused_stock",
            message=f"Stock '{stock_name}' is not connected to any flow and will stay constant",
            element_id=stock_name,
        )
        for stock_name in model.stocks
        if stock_name not in touched
    ]


# ============================================================================
# Main Validation Orchestrator
# ============================================================================


def validate_model(
    model: Model, time_series_keys: Iterable[str] = ()
) -> ValidationResult:
    """
    Orchestrate all validation checks

    Every problem is collected; nothing is mutated.

    Args:
        model: Model to check
        time_series_keys: Names that will be supplied as time-series parameters

    Returns:
        ValidationResult with errors and warnings
    """
    errors: List[ValidationError] = []
    errors.extend(validate_structure(model))
    errors.extend(validate_expressions(model, time_series_keys))

    return ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=find_unused_stocks(model),
    )


# ============================================================================
# Utility Functions
# ============================================================================


def get_validation_summary(result: ValidationResult) -> ValidationSummaryDict:
    """
    Get a summary of validation results

    Returns:
        Dictionary with error counts by category
    """
    summary: ValidationSummaryDict = {
        "valid": result.valid,
        "error_count": len(result.errors),
        "warning_count": len(result.warnings),
        "errors_by_code": {},
        "errors_by_element": {},
    }

    for error in result.errors:
        summary["errors_by_code"][error.code] = summary["errors_by_code"].get(error.code, 0) + 1
        elem_id = error.element_id or "model"
        summary["errors_by_element"][elem_id] = summary["errors_by_element"].get(elem_id, 0) + 1

    return summary
