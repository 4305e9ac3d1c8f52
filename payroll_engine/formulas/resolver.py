"""
Formula resolution for salary components.

A formula is an arithmetic expression over component codes, for example
``BASIC * 0.5`` or ``max(CTC * 0.05, 1500 * 12)``. Expressions are parsed with
``ast`` and restricted to:

  - numeric literals
  - identifiers (context values or other formula codes)
  - ``+ - * /`` and unary ``+ -``
  - the functions ``min`` and ``max``

Anything else (attribute access, comparisons, other calls, subscripts) is
rejected when the resolver is built, so a bad template fails before any
employee is processed.
"""

import ast
import logging
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from payroll_engine.core.exceptions import (
    CircularReferenceError,
    InvalidFormulaError,
    InvalidResultError,
    UnknownComponentError,
)
from payroll_engine.core.money import to_decimal

logger = logging.getLogger(__name__)

ALLOWED_FUNCTIONS = frozenset({"min", "max"})
MAX_FORMULA_LENGTH = 500

_BINARY_OPERATORS = (ast.Add, ast.Sub, ast.Mult, ast.Div)
_UNARY_OPERATORS = (ast.UAdd, ast.USub)


def parse_formula(code: str, expression: str) -> ast.expr:
    """Parse and validate a formula, returning the body of its AST."""
    if not isinstance(expression, str) or not expression.strip():
        raise InvalidFormulaError(code, str(expression), "empty expression")
    if len(expression) > MAX_FORMULA_LENGTH:
        raise InvalidFormulaError(
            code, expression[:50] + "...", f"longer than {MAX_FORMULA_LENGTH} characters"
        )

    try:
        tree = ast.parse(expression.strip(), mode="eval")
        _validate_node(tree.body, code, expression)
    except SyntaxError as e:
        raise InvalidFormulaError(code, expression, f"syntax error: {e.msg}")
    except (RecursionError, MemoryError):
        raise InvalidFormulaError(code, expression, "expression is nested too deeply")
    return tree.body


def _validate_node(node: ast.AST, code: str, expression: str) -> None:
    if isinstance(node, ast.BinOp):
        if not isinstance(node.op, _BINARY_OPERATORS):
            raise InvalidFormulaError(code, expression, f"operator {type(node.op).__name__} is not allowed")
        _validate_node(node.left, code, expression)
        _validate_node(node.right, code, expression)

    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, _UNARY_OPERATORS):
            raise InvalidFormulaError(code, expression, f"operator {type(node.op).__name__} is not allowed")
        _validate_node(node.operand, code, expression)

    elif isinstance(node, ast.Call):
        if not (isinstance(node.func, ast.Name) and node.func.id in ALLOWED_FUNCTIONS):
            raise InvalidFormulaError(code, expression, "only min() and max() may be called")
        if node.keywords or not node.args:
            raise InvalidFormulaError(code, expression, f"{node.func.id}() takes positional arguments only")
        for arg in node.args:
            _validate_node(arg, code, expression)

    elif isinstance(node, ast.Name):
        pass

    elif isinstance(node, ast.Constant):
        # bool is an int subclass
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise InvalidFormulaError(code, expression, f"constant {node.value!r} is not a number")

    else:
        raise InvalidFormulaError(code, expression, f"{type(node).__name__} is not allowed")


class FormulaSession:
    """One evaluation pass: memoized values and the chain currently being resolved.

    Sessions are cheap and must not be shared between employees or requests.
    """

    def __init__(self, resolver: "FormulaResolver", context: Mapping[str, object]):
        self.resolver = resolver
        self.context = {name: to_decimal(value) for name, value in context.items()}
        self.values: Dict[str, Decimal] = {}
        self._stack: List[str] = []

    def resolve(self, code: str) -> Decimal:
        if code in self.values:
            return self.values[code]
        if code in self._stack:
            chain = self._stack[self._stack.index(code):] + [code]
            raise CircularReferenceError(chain)

        tree = self.resolver.tree(code)
        if tree is None:
            raise UnknownComponentError(code, self._stack[-1] if self._stack else None)

        self._stack.append(code)
        try:
            value = self._eval(tree, code)
        finally:
            self._stack.pop()

        if not value.is_finite():
            raise InvalidResultError(code, f"Formula for '{code}' did not produce a finite number")
        if value < 0:
            raise InvalidResultError(
                code,
                f"Formula for '{code}' produced a negative value ({value})",
                error_data={"value": str(value)}
            )

        self.values[code] = value
        return value

    def _lookup(self, name: str, code: str) -> Decimal:
        if name in self.context:
            return self.context[name]
        if self.resolver.has_formula(name):
            return self.resolve(name)
        raise UnknownComponentError(name, code)

    def _eval(self, node: ast.AST, code: str) -> Decimal:
        if isinstance(node, ast.Constant):
            return to_decimal(node.value)

        if isinstance(node, ast.Name):
            return self._lookup(node.id, code)

        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, code)
            return -operand if isinstance(node.op, ast.USub) else operand

        if isinstance(node, ast.BinOp):
            left = self._eval(node.left, code)
            right = self._eval(node.right, code)
            if isinstance(node.op, ast.Add):
                return left + right
            if isinstance(node.op, ast.Sub):
                return left - right
            if isinstance(node.op, ast.Mult):
                return left * right
            if right == 0:
                raise InvalidResultError(code, f"Formula for '{code}' divides by zero")
            return left / right

        if isinstance(node, ast.Call):
            args = [self._eval(arg, code) for arg in node.args]
            return min(args) if node.func.id == "min" else max(args)

        # Unreachable for validated trees
        raise InvalidFormulaError(code, self.resolver.formulas.get(code, ""), f"{type(node).__name__} is not allowed")


class FormulaResolver:
    """Evaluates named, possibly interdependent formulas against a context."""

    def __init__(self, formulas: Optional[Mapping[str, str]] = None):
        self.formulas: Dict[str, str] = dict(formulas or {})
        self._trees = {
            code: parse_formula(code, expression)
            for code, expression in self.formulas.items()
        }

    def has_formula(self, code: str) -> bool:
        return code in self._trees

    def tree(self, code: str) -> Optional[ast.expr]:
        return self._trees.get(code)

    def session(self, context: Mapping[str, object]) -> FormulaSession:
        return FormulaSession(self, context)

    def evaluate(self, code: str, context: Mapping[str, object]) -> Decimal:
        """Evaluate one formula in a fresh session."""
        return self.session(context).resolve(code)

    def evaluate_all(self, context: Mapping[str, object]) -> Dict[str, Decimal]:
        """Evaluate every formula in a single session, in definition order."""
        session = self.session(context)
        return {code: session.resolve(code) for code in self.formulas}
