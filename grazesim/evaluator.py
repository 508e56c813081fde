"""
Rate expression evaluator for the grazing simulation engine
Safely evaluates flow rate expressions with a controlled namespace and AST parsing
"""

from typing import Dict, Set, Optional, Any, Mapping, Tuple
import ast
import operator
import math
import re
import logging

from grazesim.exceptions import EvaluationError
from grazesim.constants import (
    SAFE_FUNCTION_NAMES,
    SAFE_AST_OPERATORS,
    BUILT_IN_CONSTANTS,
)

logger = logging.getLogger(__name__)

# Operators written the C way in model files, rewritten to Python syntax
_LOGICAL_AND = re.compile(r"&&")
_LOGICAL_OR = re.compile(r"\|\|")
_OPERAND = re.compile(r"[A-Za-z_0-9.]+")


def _matching_paren(expression: str, start: int) -> int:
    """Index just past the parenthesis that closes the one at `start`"""
    depth = 0
    for i in range(start, len(expression)):
        if expression[i] == "(":
            depth += 1
        elif expression[i] == ")":
            depth -= 1
            if depth == 0:
                return i + 1
    return len(expression)


def _operand_end(expression: str, start: int) -> int:
    """
    End of the operand a prefix operator applies to

    The operand is a parenthesized group, a name or number (with a call's
    argument list if one follows), or another prefix operator and its operand.
    """
    i = start
    while i < len(expression) and expression[i].isspace():
        i += 1
    if i >= len(expression):
        return i
    if expression[i] in "!+-":
        return _operand_end(expression, i + 1)
    if expression[i] == "(":
        return _matching_paren(expression, i)

    match = _OPERAND.match(expression, i)
    if match is None:
        return i
    end = match.end()
    j = end
    while j < len(expression) and expression[j].isspace():
        j += 1
    if j < len(expression) and expression[j] == "(":
        return _matching_paren(expression, j)
    return end


def _negate_operands(expression: str) -> str:
    """Rewrite each C-style '!x' (but not '!=') as '(not x)'"""
    parts = []
    i = 0
    while i < len(expression):
        if expression[i] == "!" and expression[i + 1:i + 2] != "=":
            end = _operand_end(expression, i + 1)
            operand = _negate_operands(expression[i + 1:end]).strip()
            parts.append(f"(not {operand})")
            i = end
        else:
            parts.append(expression[i])
            i += 1
    return "".join(parts)


def normalize_expression(expression: str) -> str:
    """
    Rewrite model-file operator spellings into Python expression syntax

    ``^`` becomes ``**`` and ``&&``/``||`` become ``and``/``or``. A C-style ``!``
    negates only its operand, so ``!a + 1`` reads as ``(not a) + 1``.

    Args:
        expression: Rate expression as written in the model

    Returns:
        Expression parseable by ``ast.parse(mode="eval")``
    """
    expression = expression.strip().replace("^", "**")
    expression = _LOGICAL_AND.sub(" and ", expression)
    expression = _LOGICAL_OR.sub(" or ", expression)
    expression = _negate_operands(expression)
    return expression.strip()


def _ifelse(condition: Any, when_true: float, when_false: float) -> float:
    return when_true if condition else when_false


class SafeEquationEvaluator:
    """
    Safely evaluate flow rate expressions against a flat variable context

    Supports:
    - Arithmetic (+, -, *, /, %, ^ or **)
    - Comparisons (<, <=, >, >=, ==, !=)
    - Boolean operations (&&, ||, !, and, or, not)
    - Whitelisted functions (min, max, abs, pow, exp, log, sqrt, sin, cos)
    - The ternary helper ifelse(condition, a, b)
    - The constants PI and E
    """

    # Operator implementations
    SAFE_OPERATORS = {
        ast.Add: operator.add,
        ast.Sub: operator.sub,
        ast.Mult: operator.mul,
        ast.Div: operator.truediv,
        ast.Mod: operator.mod,
        ast.Pow: operator.pow,
        ast.USub: operator.neg,
        ast.UAdd: operator.pos,
    }

    # Function implementations
    SAFE_FUNCTIONS = {
        "abs": abs,
        "min": min,
        "max": max,
        "pow": math.pow,
        "exp": math.exp,
        "log": math.log,
        "sqrt": math.sqrt,
        "sin": math.sin,
        "cos": math.cos,
        "ifelse": _ifelse,
    }

    def __init__(self):
        """Initialize evaluator with an empty parse cache"""
        self._ast_cache: Dict[str, ast.Expression] = {}

    def clear_cache(self) -> None:
        """Clear the internal AST cache"""
        self._ast_cache.clear()

    def parse_equation(
        self, equation: str, element_id: Optional[str] = None, use_cache: bool = True
    ) -> ast.Expression:
        """
        Parse expression string into AST with optional caching

        Args:
            equation: Rate expression string
            element_id: Optional flow name for error reporting
            use_cache: Whether to use internal cache

        Returns:
            Parsed AST expression

        Raises:
            EvaluationError: If expression syntax is invalid
        """
        cache_key = equation.strip()

        if use_cache and cache_key in self._ast_cache:
            return self._ast_cache[cache_key]

        try:
            tree = ast.parse(normalize_expression(cache_key), mode="eval")
        except SyntaxError as e:
            raise EvaluationError(
                code="syntax_error",
                message=f"Syntax error in expression: {cache_key}. {str(e)}",
                element_id=element_id,
                equation=cache_key,
            ) from e

        if use_cache:
            self._ast_cache[cache_key] = tree
        return tree

    def eval_node(
        self,
        node: ast.AST,
        context: Mapping[str, float],
        element_id: Optional[str] = None,
    ) -> Any:
        """
        Recursively evaluate AST node

        Args:
            node: AST node to evaluate
            context: Variable name -> value
            element_id: Optional flow name for error reporting

        Returns:
            Evaluated result (float or bool)

        Raises:
            EvaluationError: If evaluation fails
        """
        if isinstance(node, ast.Expression):
            return self.eval_node(node.body, context, element_id)

        if isinstance(node, ast.Constant):
            if isinstance(node.value, (int, float)):
                return float(node.value)
            raise EvaluationError(
                code="unsupported_constant",
                message=f"Unsupported literal: {node.value!r}",
                element_id=element_id,
            )

        # Variable reference
        if isinstance(node, ast.Name):
            var_name = node.id
            if var_name in context:
                return context[var_name]
            if var_name in BUILT_IN_CONSTANTS:
                return BUILT_IN_CONSTANTS[var_name]
            raise EvaluationError(
                code="undefined_variable",
                message=f"Undefined variable: {var_name}",
                element_id=element_id,
                equation=var_name,
            )

        if isinstance(node, ast.BinOp):
            return self._eval_binop(node, context, element_id)

        if isinstance(node, ast.UnaryOp):
            return self._eval_unaryop(node, context, element_id)

        if isinstance(node, ast.Call):
            return self._eval_call(node, context, element_id)

        # Ternary conditional (x if condition else y)
        if isinstance(node, ast.IfExp):
            if self.eval_node(node.test, context, element_id):
                return self.eval_node(node.body, context, element_id)
            return self.eval_node(node.orelse, context, element_id)

        if isinstance(node, ast.Compare):
            return self._eval_compare(node, context, element_id)

        if isinstance(node, ast.BoolOp):
            return self._eval_boolop(node, context, element_id)

        raise EvaluationError(
            code="unsupported_node_type",
            message=f"Unsupported expression type: {type(node).__name__}",
            element_id=element_id,
        )

    def _eval_binop(
        self, node: ast.BinOp, context: Mapping[str, float], element_id: Optional[str]
    ) -> float:
        """Evaluate binary operation"""
        op_type = type(node.op)
        if op_type not in self.SAFE_OPERATORS:
            raise EvaluationError(
                code="unsupported_operator",
                message=f"Unsupported operator: {op_type.__name__}",
                element_id=element_id,
            )

        left = self.eval_node(node.left, context, element_id)
        right = self.eval_node(node.right, context, element_id)

        if op_type in (ast.Div, ast.Mod) and right == 0:
            raise EvaluationError(
                code="division_by_zero",
                message="Division by zero in expression",
                element_id=element_id,
            )

        try:
            return self.SAFE_OPERATORS[op_type](left, right)
        except (ArithmeticError, TypeError, ValueError) as e:
            raise EvaluationError(
                code="arithmetic_error",
                message=f"Arithmetic error: {str(e)}",
                element_id=element_id,
            ) from e

    def _eval_unaryop(
        self, node: ast.UnaryOp, context: Mapping[str, float], element_id: Optional[str]
    ) -> Any:
        """Evaluate unary operation"""
        op_type = type(node.op)
        operand = self.eval_node(node.operand, context, element_id)

        if op_type == ast.Not:
            return not operand
        if op_type in self.SAFE_OPERATORS:
            return self.SAFE_OPERATORS[op_type](operand)
        raise EvaluationError(
            code="unsupported_unary_operator",
            message=f"Unsupported unary operator: {op_type.__name__}",
            element_id=element_id,
        )

    def _eval_call(
        self, node: ast.Call, context: Mapping[str, float], element_id: Optional[str]
    ) -> float:
        """Evaluate function call"""
        if not isinstance(node.func, ast.Name):
            raise EvaluationError(
                code="invalid_function_call",
                message="Function call must use a named function",
                element_id=element_id,
            )

        func_name = node.func.id
        if func_name not in self.SAFE_FUNCTIONS:
            raise EvaluationError(
                code="function_not_allowed",
                message=(
                    f"Function not allowed: {func_name}. "
                    f"Allowed functions: {', '.join(sorted(self.SAFE_FUNCTIONS.keys()))}"
                ),
                element_id=element_id,
            )
        if node.keywords:
            raise EvaluationError(
                code="invalid_function_call",
                message=f"Keyword arguments are not supported in {func_name}()",
                element_id=element_id,
            )

        args = [self.eval_node(arg, context, element_id) for arg in node.args]

        try:
            return self.SAFE_FUNCTIONS[func_name](*args)
        except ValueError as e:
            raise EvaluationError(
                code="math_domain_error",
                message=f"Math domain error in {func_name}: {str(e)}",
                element_id=element_id,
            ) from e
        except (ArithmeticError, TypeError) as e:
            raise EvaluationError(
                code="function_evaluation_error",
                message=f"Error evaluating function {func_name}: {str(e)}",
                element_id=element_id,
            ) from e

    def _eval_compare(
        self, node: ast.Compare, context: Mapping[str, float], element_id: Optional[str]
    ) -> bool:
        """Evaluate comparison expression"""
        left = self.eval_node(node.left, context, element_id)

        for op, comparator in zip(node.ops, node.comparators):
            right = self.eval_node(comparator, context, element_id)

            if isinstance(op, ast.Lt):
                result = left < right
            elif isinstance(op, ast.LtE):
                result = left <= right
            elif isinstance(op, ast.Gt):
                result = left > right
            elif isinstance(op, ast.GtE):
                result = left >= right
            elif isinstance(op, ast.Eq):
                result = left == right
            elif isinstance(op, ast.NotEq):
                result = left != right
            else:
                raise EvaluationError(
                    code="unsupported_comparison",
                    message=f"Unsupported comparison operator: {type(op).__name__}",
                    element_id=element_id,
                )

            if not result:
                return False
            left = right

        return True

    def _eval_boolop(
        self, node: ast.BoolOp, context: Mapping[str, float], element_id: Optional[str]
    ) -> bool:
        """Evaluate boolean operation (and, or)"""
        if isinstance(node.op, ast.And):
            for value in node.values:
                if not self.eval_node(value, context, element_id):
                    return False
            return True
        if isinstance(node.op, ast.Or):
            for value in node.values:
                if self.eval_node(value, context, element_id):
                    return True
            return False
        raise EvaluationError(
            code="unsupported_bool_op",
            message=f"Unsupported boolean operator: {type(node.op).__name__}",
            element_id=element_id,
        )

    def evaluate(
        self,
        equation: str,
        context: Mapping[str, float],
        element_id: Optional[str] = None,
    ) -> float:
        """
        Evaluate expression string against a variable context

        Args:
            equation: Rate expression string
            context: Variable name -> value (stocks, params, earlier flows, t, dt)
            element_id: Optional flow name for error reporting

        Returns:
            Evaluated numeric result (boolean comparisons converted to 1.0/0.0)

        Raises:
            EvaluationError: If evaluation fails or the result is not finite
        """
        if not equation or equation.strip() == "":
            return 0.0

        try:
            tree = self.parse_equation(equation, element_id)
            result = self.eval_node(tree, context, element_id)
            # Convert boolean to float (True -> 1.0, False -> 0.0)
            if isinstance(result, bool):
                result = 1.0 if result else 0.0
            result = float(result)
        except EvaluationError as e:
            e.details.setdefault("expression", equation)
            raise
        except (ArithmeticError, TypeError, ValueError) as e:
            raise EvaluationError(
                code="evaluation_error",
                message=f"Error evaluating '{equation}': {str(e)}",
                element_id=element_id,
                equation=equation,
            ) from e

        if not math.isfinite(result):
            raise EvaluationError(
                code="non_finite_result",
                message=f"Expression '{equation}' produced a non-finite value ({result})",
                element_id=element_id,
                equation=equation,
            )
        return result

    def evaluate_rate(
        self,
        equation: str,
        context: Mapping[str, float],
        element_id: Optional[str] = None,
    ) -> Tuple[float, Optional[EvaluationError]]:
        """
        Evaluate a flow rate, recovering from failure

        A failing expression yields a rate of 0 so one bad flow cannot void a
        long run. The failure is logged with the flow name and expression and
        handed back so the caller can surface it.

        Returns:
            Tuple of (rate, error or None)
        """
        try:
            return self.evaluate(equation, context, element_id), None
        except EvaluationError as e:
            logger.warning(
                f"Flow '{element_id}' evaluation failed, using rate 0: {e.message}",
                extra={"flow": element_id, "expression": equation, "code": e.code},
            )
            return 0.0, e


# ============================================================================
# Variable Reference Extraction
# ============================================================================


def extract_variable_references(node: ast.AST) -> Set[str]:
    """
    Extract all variable names referenced in an AST node

    Function names and numeric constants are excluded.

    Args:
        node: AST node to analyze

    Returns:
        Set of variable names referenced
    """
    variables: Set[str] = set()
    _extract_variables_recursive(node, variables)
    return variables


def _extract_variables_recursive(node: ast.AST, variables: Set[str]) -> None:
    """Recursive helper for variable extraction"""
    if node is None:
        return

    if isinstance(node, ast.Expression):
        _extract_variables_recursive(node.body, variables)

    elif isinstance(node, ast.Name):
        if node.id not in SAFE_FUNCTION_NAMES:
            variables.add(node.id)

    elif isinstance(node, ast.BinOp):
        _extract_variables_recursive(node.left, variables)
        _extract_variables_recursive(node.right, variables)

    elif isinstance(node, ast.UnaryOp):
        _extract_variables_recursive(node.operand, variables)

    elif isinstance(node, ast.Call):
        # Function name is not a variable, its arguments may be
        for arg in node.args:
            _extract_variables_recursive(arg, variables)
        for keyword in node.keywords:
            _extract_variables_recursive(keyword.value, variables)

    elif isinstance(node, ast.IfExp):
        _extract_variables_recursive(node.test, variables)
        _extract_variables_recursive(node.body, variables)
        _extract_variables_recursive(node.orelse, variables)

    elif isinstance(node, ast.Compare):
        _extract_variables_recursive(node.left, variables)
        for comparator in node.comparators:
            _extract_variables_recursive(comparator, variables)

    elif isinstance(node, ast.BoolOp):
        for value in node.values:
            _extract_variables_recursive(value, variables)


# ============================================================================
# Safety Check
# ============================================================================


def validate_expression_ast(node: ast.AST) -> Tuple[bool, Optional[str]]:
    """
    Recursively validate AST for unsafe operations

    Returns:
        Tuple of (is_valid, error_message)
    """
    if isinstance(node, ast.Expression):
        return validate_expression_ast(node.body)

    if isinstance(node, ast.Constant):
        if isinstance(node.value, (int, float)):
            return True, None
        return False, f"Unsupported literal: {node.value!r}"

    if isinstance(node, ast.Name):
        return True, None

    if isinstance(node, ast.BinOp):
        if type(node.op) not in SAFE_AST_OPERATORS:
            return False, f"Unsupported operator: {type(node.op).__name__}"
        valid, error = validate_expression_ast(node.left)
        if not valid:
            return False, error
        return validate_expression_ast(node.right)

    if isinstance(node, ast.UnaryOp):
        if type(node.op) not in SAFE_AST_OPERATORS:
            return False, f"Unsupported unary operator: {type(node.op).__name__}"
        return validate_expression_ast(node.operand)

    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name):
            return False, "Only simple function calls are allowed (no method calls)"
        if node.func.id not in SAFE_FUNCTION_NAMES:
            return False, (
                f"Function '{node.func.id}' is not allowed. "
                f"Allowed: {', '.join(sorted(SAFE_FUNCTION_NAMES))}"
            )
        if node.keywords:
            return False, "Keyword arguments are not allowed"
        for arg in node.args:
            valid, error = validate_expression_ast(arg)
            if not valid:
                return False, error
        return True, None

    if isinstance(node, ast.IfExp):
        for part in (node.test, node.body, node.orelse):
            valid, error = validate_expression_ast(part)
            if not valid:
                return False, error
        return True, None

    if isinstance(node, ast.Compare):
        for op in node.ops:
            if type(op) not in SAFE_AST_OPERATORS:
                return False, f"Unsupported comparison: {type(op).__name__}"
        for part in [node.left, *node.comparators]:
            valid, error = validate_expression_ast(part)
            if not valid:
                return False, error
        return True, None

    if isinstance(node, ast.BoolOp):
        for value in node.values:
            valid, error = validate_expression_ast(value)
            if not valid:
                return False, error
        return True, None

    return False, f"Unsupported expression type: {type(node).__name__}"
