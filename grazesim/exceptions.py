"""
Structured exception classes for the grazing simulation engine
Provides unified error handling with structured error responses
"""

from typing import Optional, Dict, Any, List
from pydantic import BaseModel


class ValidationError(BaseModel):
    """
    Structured validation error with detailed information

    Attributes:
        code: Error code for programmatic handling
        message: Human-readable error message
        element_id: Name of the stock/flow causing the error (if applicable)
        field: Field name within the element (if applicable)
        suggestion: Optional suggestion for fixing the error
        context: Optional additional context information
    """

    code: str
    message: str
    element_id: Optional[str] = None
    field: Optional[str] = None
    suggestion: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        """String representation for logging"""
        parts = [f"[{self.code}] {self.message}"]
        if self.element_id:
            parts.append(f"Element: {self.element_id}")
        if self.field:
            parts.append(f"Field: {self.field}")
        if self.suggestion:
            parts.append(f"Suggestion: {self.suggestion}")
        return " | ".join(parts)


class SimulationError(Exception):
    """
    Exception raised during simulation execution

    Attributes:
        code: Error code for programmatic handling
        message: Human-readable error message
        details: Additional error details
    """

    def __init__(
        self, code: str, message: str, details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        """String representation for logging"""
        return f"[{self.code}] {self.message}"


class EvaluationError(Exception):
    """
    Exception raised while evaluating a single rate expression

    Inside a simulation run this is recovered locally (the flow's rate becomes 0
    and a warning is recorded); it only reaches API callers when an expression is
    evaluated directly.

    Attributes:
        code: Error code for programmatic handling
        message: Human-readable error message
        element_id: Name of the flow being evaluated
        equation: The expression that failed
        details: Additional error details
    """

    def __init__(
        self,
        code: str,
        message: str,
        element_id: Optional[str] = None,
        equation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.element_id = element_id
        self.equation = equation
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response with unified format"""
        result = {
            "code": self.code,
            "message": self.message,
            "details": self.details.copy() if self.details else {},
        }
        if self.element_id:
            result["details"]["element_id"] = self.element_id
        if self.equation:
            result["details"]["equation"] = self.equation
        return result

    def __str__(self) -> str:
        """String representation for logging"""
        parts = [f"[{self.code}] {self.message}"]
        if self.element_id:
            parts.append(f"Element: {self.element_id}")
        if self.equation:
            parts.append(f"Equation: {self.equation}")
        return " | ".join(parts)


class ModelInvalidError(SimulationError):
    """
    Structural or reference errors found before any simulation step runs

    Attributes:
        errors: Every validation problem found, not just the first
    """

    def __init__(
        self,
        errors: List[ValidationError],
        model_name: Optional[str] = None,
    ):
        self.errors = list(errors)
        label = f"'{model_name}'" if model_name else "Model"
        super().__init__(
            code="model_invalid",
            message=(
                f"{label} failed validation: {len(self.errors)} error(s) found. "
                f"Please fix errors before running."
            ),
            details={
                "errors": [e.model_dump() for e in self.errors],
                "error_messages": [e.message for e in self.errors],
                "error_count": len(self.errors),
            },
        )


class InsufficientHistoryError(SimulationError):
    """
    The weather archive does not cover the requested historical window
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code="insufficient_history",
            message=message,
            details=details,
        )


class InsufficientWeatherCoverageError(SimulationError):
    """
    Neither real nor proxy weather exists for part of a requested horizon
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code="insufficient_weather_coverage",
            message=message,
            details=details,
        )


class UnknownPaddockError(SimulationError):
    """
    A paddock key that is not part of the configured farm

    Attributes:
        paddock: The offending key
    """

    def __init__(self, paddock: str, known: Optional[List[str]] = None):
        self.paddock = paddock
        super().__init__(
            code="unknown_paddock",
            message=f"Unknown paddock: '{paddock}'",
            details={"paddock": paddock, "known_paddocks": sorted(known or [])},
        )


class ModelNotFoundError(SimulationError):
    """
    No model definition file exists for the requested name
    """

    def __init__(self, name: str, models_dir: str):
        super().__init__(
            code="model_not_found",
            message=f"Model not found: '{name}'",
            details={"name": name, "models_dir": models_dir},
        )


class DataSourceError(SimulationError):
    """
    A farm record (weather archive, rotation history, planting schedule) is
    missing or unreadable
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code="data_source_error",
            message=message,
            details=details,
        )
