"""
Tests for the restricted formula resolver.

Validates:
- Arithmetic, min/max and chained formula references
- Cycle detection with the offending chain
- Unknown names, division by zero and negative results
- Rejection of anything outside the allowed grammar at build time
"""

from decimal import Decimal

import pytest

from payroll_engine.core.exceptions import (
    CircularReferenceError,
    InvalidFormulaError,
    InvalidResultError,
    UnknownComponentError,
)
from payroll_engine.formulas.resolver import FormulaResolver, parse_formula


class TestEvaluation:
    """Well-formed formulas evaluate to exact decimals."""

    def test_context_reference(self):
        resolver = FormulaResolver({"HRA": "BASIC * 0.5"})
        assert resolver.evaluate("HRA", {"BASIC": 20000}) == Decimal("10000")

    def test_chained_formulas(self):
        resolver = FormulaResolver({"A": "B + 1", "B": "BASIC / 2"})
        assert resolver.evaluate("A", {"BASIC": 10}) == Decimal("6")

    def test_min_and_max(self):
        resolver = FormulaResolver({
            "FLOOR": "max(BASIC * 0.1, 1500)",
            "CAP": "min(BASIC, 15000)",
        })
        values = resolver.evaluate_all({"BASIC": 10000})
        assert values["FLOOR"] == Decimal("1500")
        assert values["CAP"] == Decimal("10000")

    def test_unary_and_parentheses(self):
        resolver = FormulaResolver({"X": "-(BASIC - 300) + 500"})
        assert resolver.evaluate("X", {"BASIC": 100}) == Decimal("700")

    def test_float_literals_are_exact(self):
        resolver = FormulaResolver({"X": "0.1 + 0.2"})
        assert resolver.evaluate("X", {}) == Decimal("0.3")

    def test_evaluate_all_memoizes_shared_dependencies(self):
        resolver = FormulaResolver({"BASE": "CTC / 12", "A": "BASE * 2", "B": "BASE * 3"})
        session = resolver.session({"CTC": 1200})
        assert session.resolve("A") == Decimal("200")
        assert session.values["BASE"] == Decimal("100")
        assert session.resolve("B") == Decimal("300")

    def test_context_wins_over_formula_of_same_name(self):
        resolver = FormulaResolver({"BONUS": "BASIC * 2"})
        session = resolver.session({"BASIC": 10, "BONUS": 1})
        assert session._lookup("BONUS", "X") == Decimal("1")


class TestCycles:
    """Circular references report the chain that closed the loop."""

    def test_two_step_cycle(self):
        resolver = FormulaResolver({"A": "B + 1", "B": "A + 1"})
        with pytest.raises(CircularReferenceError) as exc_info:
            resolver.evaluate("A", {})
        assert exc_info.value.chain == ["A", "B", "A"]
        assert exc_info.value.error_code == "CIRCULAR_REFERENCE"

    def test_self_reference(self):
        resolver = FormulaResolver({"A": "A + 1"})
        with pytest.raises(CircularReferenceError) as exc_info:
            resolver.evaluate("A", {})
        assert exc_info.value.chain == ["A", "A"]

    def test_cycle_does_not_poison_later_sessions(self):
        resolver = FormulaResolver({"A": "B + 1", "B": "A + 1", "C": "BASIC * 2"})
        with pytest.raises(CircularReferenceError):
            resolver.evaluate("A", {})
        assert resolver.evaluate("C", {"BASIC": 5}) == Decimal("10")


class TestEvaluationErrors:

    def test_unknown_name(self):
        resolver = FormulaResolver({"A": "FOO * 2"})
        with pytest.raises(UnknownComponentError) as exc_info:
            resolver.evaluate("A", {"BASIC": 1})
        assert exc_info.value.code == "FOO"
        assert exc_info.value.error_data["referenced_by"] == "A"

    def test_unknown_formula_code(self):
        resolver = FormulaResolver({})
        with pytest.raises(UnknownComponentError):
            resolver.evaluate("MISSING", {})

    def test_division_by_zero(self):
        resolver = FormulaResolver({"A": "BASIC / (BASIC - BASIC)"})
        with pytest.raises(InvalidResultError) as exc_info:
            resolver.evaluate("A", {"BASIC": 10})
        assert exc_info.value.error_code == "INVALID_RESULT"

    def test_negative_result(self):
        resolver = FormulaResolver({"A": "BASIC - 100000"})
        with pytest.raises(InvalidResultError):
            resolver.evaluate("A", {"BASIC": 10})


class TestGrammar:
    """Formulas outside the arithmetic subset are rejected when the resolver is built."""

    @pytest.mark.parametrize("expression", [
        "__import__('os').system('true')",
        "BASIC ** 2",
        "BASIC % 7",
        "BASIC > 1",
        "abs(BASIC)",
        "max(a=1)",
        "BASIC.real",
        "[BASIC][0]",
        "'text'",
        "True + 1",
        "lambda: 1",
    ])
    def test_rejected_constructs(self, expression):
        with pytest.raises(InvalidFormulaError):
            FormulaResolver({"X": expression})

    @pytest.mark.parametrize("expression", ["", "   ", "BASIC +"])
    def test_empty_or_malformed(self, expression):
        with pytest.raises(InvalidFormulaError):
            parse_formula("X", expression)

    def test_error_payload_names_the_formula(self):
        with pytest.raises(InvalidFormulaError) as exc_info:
            parse_formula("BONUS", "BASIC ** 2")
        assert exc_info.value.error_code == "INVALID_FORMULA"
        assert "BONUS" in str(exc_info.value)

    @pytest.mark.parametrize("expression", [
        "(" * 300 + "BASIC" + ")" * 300,
        " + ".join(["BASIC"] * 100),
    ])
    def test_overlong_expression(self, expression):
        with pytest.raises(InvalidFormulaError) as exc_info:
            parse_formula("X", expression)
        assert "500" in str(exc_info.value)

    def test_exhausted_recursion_is_a_formula_error(self, monkeypatch):
        from payroll_engine.formulas import resolver

        def too_deep(*args):
            raise RecursionError("maximum recursion depth exceeded")

        monkeypatch.setattr(resolver, "_validate_node", too_deep)
        with pytest.raises(InvalidFormulaError) as exc_info:
            parse_formula("X", "BASIC * 0.5")
        assert "nested too deeply" in str(exc_info.value)
