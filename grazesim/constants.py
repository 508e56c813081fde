"""
Shared constants for the grazing simulation engine
Centralizes names and operators so the validator and evaluator agree
"""

import ast
import math

# ============================================================================
# Built-in Variables
# ============================================================================

# Variables automatically available in all rate expressions
BUILT_IN_VARIABLES = {"t", "dt"}

# Named constants available in all rate expressions
BUILT_IN_CONSTANTS = {
    "PI": math.pi,
    "E": math.e,
}

# Sentinel used in flow definitions for the world outside the model
EXTERNAL = "external"

# ============================================================================
# Safe Functions
# ============================================================================

# Function names allowed in rate expressions
# This set is used by the validator to check expression safety
SAFE_FUNCTION_NAMES = {
    "abs",
    "min",
    "max",
    "pow",
    "exp",
    "log",
    "sqrt",
    "sin",
    "cos",
    # Ternary helper: ifelse(condition, when_true, when_false)
    "ifelse",
}

# Every reserved name an expression may use without declaring it
RESERVED_NAMES = BUILT_IN_VARIABLES | set(BUILT_IN_CONSTANTS) | SAFE_FUNCTION_NAMES

# ============================================================================
# Safe AST Operators
# ============================================================================

# Binary and unary operators allowed in rate expressions
SAFE_AST_OPERATORS = {
    # Arithmetic
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.Pow,
    ast.Mod,
    # Unary
    ast.USub,
    ast.UAdd,
    ast.Not,
    # Comparison
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.Eq,
    ast.NotEq,
    # Boolean
    ast.And,
    ast.Or,
}

# ============================================================================
# Simulation Limits
# ============================================================================

MAX_SIMULATION_STEPS = 100_000

# ============================================================================
# Farm Defaults
# ============================================================================

# Forage levels reported as recovery milestones by the scenario projector
PROJECTION_MILESTONES = (500, 800, 1200, 1500)

# Evapotranspiration used when the archive has no value for a day (mm)
DEFAULT_ET = 1.5

# Season keys used by planting schedules
COOL_SEASON_KEY = "cool_season"
WARM_SEASON_KEY = "warm_season"
VALID_SEASON_KEYS = {COOL_SEASON_KEY, WARM_SEASON_KEY}
