"""
Freight/Tax Formula Evaluator

Evaluates the user-configured destination formulas, e.g.
    "weight * 2.5 + 50"
    "(value * 0.012) + 35"
    "PESO * 1,8"

Safety: the formula is parsed with ast in "eval" mode and the resulting tree is
walked against a whitelist. The string itself is never executed. Only
+ - * / (binary), unary +/-, parentheses, decimal literals and the variables
weight/value (case-insensitive, pt-BR aliases peso/valor) are accepted.

All arithmetic is Decimal; the result is rounded to 2 places at the end only.
"""

import ast
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Set

from costing_errors import InvalidFormulaError, InvalidInputError
from costing_models import round_decimal

logger = logging.getLogger(__name__)


# Canonical variable names and accepted spellings (compared lowercased)
VARIABLE_ALIASES = {
    "weight": "weight",
    "peso": "weight",
    "value": "value",
    "valor": "value",
}
CANONICAL_VARIABLES = ("weight", "value")

MAX_FORMULA_LENGTH = 500

# 2,5 -> 2.5 (pt-BR decimal comma between digits)
_DECIMAL_COMMA = re.compile(r"(?<=\d),(?=\d)")

# Only plain decimal literals (no exponents, underscores, hex)
_PLAIN_NUMBER = re.compile(r"^\d+(\.\d+)?$")

_BINARY_OPS = (ast.Add, ast.Sub, ast.Mult, ast.Div)
_UNARY_OPS = (ast.UAdd, ast.USub)


# ============================================================================
# PARSING
# ============================================================================

def _normalize(formula: str) -> str:
    return _DECIMAL_COMMA.sub(".", formula.strip())


def _check_parentheses(source: str, original: str) -> None:
    depth = 0
    for char in source:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise InvalidFormulaError("Unbalanced parentheses: unexpected ')'", original)
    if depth != 0:
        raise InvalidFormulaError("Unbalanced parentheses: missing ')'", original)


class ParsedFormula:
    """A validated expression tree, reusable across evaluations."""

    def __init__(self, formula: str):
        if formula is None or not str(formula).strip():
            raise InvalidFormulaError("Formula is empty", formula)
        if len(formula) > MAX_FORMULA_LENGTH:
            raise InvalidFormulaError(
                f"Formula exceeds {MAX_FORMULA_LENGTH} characters", formula[:50] + "..."
            )

        self.formula = formula
        self.source = _normalize(formula)
        _check_parentheses(self.source, formula)

        try:
            self.tree = ast.parse(self.source, mode="eval")
        except SyntaxError as e:
            raise InvalidFormulaError(f"Formula could not be parsed: {e.msg}", formula)

        self.variables: Set[str] = set()
        self._validate(self.tree.body)

    def _validate(self, node: ast.AST) -> None:
        """Reject every construct outside the grammar before evaluating."""
        if isinstance(node, ast.BinOp):
            if not isinstance(node.op, _BINARY_OPS):
                raise InvalidFormulaError(
                    f"Operator not allowed: {type(node.op).__name__}", self.formula
                )
            self._validate(node.left)
            self._validate(node.right)
        elif isinstance(node, ast.UnaryOp):
            if not isinstance(node.op, _UNARY_OPS):
                raise InvalidFormulaError(
                    f"Operator not allowed: {type(node.op).__name__}", self.formula
                )
            self._validate(node.operand)
        elif isinstance(node, ast.Constant):
            value = node.value
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidFormulaError(f"Invalid literal: {value!r}", self.formula)
            self._literal(node)
        elif isinstance(node, ast.Name):
            canonical = VARIABLE_ALIASES.get(node.id.lower())
            if canonical is None:
                raise InvalidFormulaError(
                    f"Unknown identifier '{node.id}'. Allowed: weight, value",
                    self.formula,
                    {"identifier": node.id},
                )
            self.variables.add(canonical)
        elif isinstance(node, ast.Call):
            raise InvalidFormulaError("Function calls are not allowed", self.formula)
        else:
            raise InvalidFormulaError(
                f"Unsupported expression: {type(node).__name__}", self.formula
            )

    def _literal(self, node: ast.Constant) -> Decimal:
        # Use the literal text so 0.1 stays exactly 0.1
        text = ast.get_source_segment(self.source, node) or repr(node.value)
        if not _PLAIN_NUMBER.match(text):
            raise InvalidFormulaError(f"Invalid number: {text}", self.formula)
        return Decimal(text)

    def _eval(self, node: ast.AST, env: Dict[str, Decimal]) -> Decimal:
        if isinstance(node, ast.Constant):
            return self._literal(node)

        if isinstance(node, ast.Name):
            return env[VARIABLE_ALIASES[node.id.lower()]]

        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, env)
            return -operand if isinstance(node.op, ast.USub) else operand

        # BinOp (only node type left after _validate)
        left = self._eval(node.left, env)
        right = self._eval(node.right, env)
        if isinstance(node.op, ast.Add):
            return left + right
        if isinstance(node.op, ast.Sub):
            return left - right
        if isinstance(node.op, ast.Mult):
            return left * right
        if right == 0:
            raise InvalidFormulaError("Division by zero", self.formula)
        return left / right

    def evaluate_raw(self, variables: Mapping[str, Any]) -> Decimal:
        """Evaluate without rounding."""
        env = _bind_variables(variables)
        return self._eval(self.tree.body, env)

    def evaluate(self, variables: Mapping[str, Any]) -> Decimal:
        """Evaluate and round to currency precision."""
        result = round_decimal(self.evaluate_raw(variables))
        logger.debug(f"Formula '{self.formula}' evaluated to {result}")
        return result


def _bind_variables(variables: Mapping[str, Any]) -> Dict[str, Decimal]:
    """Map caller variables (any case, aliases allowed) to Decimal values."""
    env: Dict[str, Decimal] = {}
    for key, raw in (variables or {}).items():
        canonical = VARIABLE_ALIASES.get(str(key).lower())
        if canonical is None:
            continue
        try:
            number = raw if isinstance(raw, Decimal) else Decimal(str(raw))
        except InvalidOperation:
            raise InvalidInputError(f"Variable '{key}' is not a number: {raw!r}", {"variable": key})
        if not number.is_finite():
            raise InvalidInputError(f"Variable '{key}' must be finite: {raw!r}", {"variable": key})
        env[canonical] = number

    missing = [name for name in CANONICAL_VARIABLES if name not in env]
    if missing:
        raise InvalidInputError(
            f"Missing formula variables: {', '.join(missing)}", {"missing": missing}
        )
    return env


# ============================================================================
# PUBLIC API
# ============================================================================

def parse_formula(formula: str) -> ParsedFormula:
    """Parse and validate a formula once for repeated evaluation."""
    return ParsedFormula(formula)


def evaluate(formula: str, variables: Mapping[str, Any]) -> Decimal:
    """
    Evaluate a freight/tax formula.

    Args:
        formula: Expression over weight and value
        variables: {"weight": ..., "value": ...}

    Returns:
        Decimal rounded to 2 places

    Raises:
        InvalidFormulaError: unknown identifier, unbalanced parentheses,
            division by zero, or any parse failure
    """
    return ParsedFormula(formula).evaluate(variables)


def validate_formula(formula: str) -> List[str]:
    """
    Validate a formula for configuration forms.
    Returns list of error messages (empty list if valid).
    """
    try:
        ParsedFormula(formula)
    except InvalidFormulaError as e:
        return [e.message]
    return []


def formula_variables(formula: str) -> Set[str]:
    """Canonical variables referenced by a formula."""
    return set(ParsedFormula(formula).variables)
