"""Tests for the ExpressionService facade."""

import logging
from datetime import date

import pytest

from flowforge.expressions import (
    CalculatedField,
    EvaluationContext,
    ExpressionLimits,
    ExpressionService,
    FunctionCategory,
    FunctionDefinition,
    FunctionRegistry,
    evaluate,
    list_functions,
    parse,
    validate,
)
from flowforge.expressions import parser as parser_module
from flowforge.expressions import service as service_module


@pytest.fixture
def service():
    return ExpressionService(limits=ExpressionLimits())


def labels(suggestions):
    return [s.label for s in suggestions]


# =============================================================================
# Parse and evaluate
# =============================================================================


class TestServiceParse:
    """Tests for ExpressionService.parse."""

    def test_parse_success(self, service):
        result = service.parse("a + 1")

        assert result.success
        assert result.error is None
        assert result.node_count == 3
        assert result.depth == 2

    def test_parse_to_dict(self, service):
        data = service.parse("a + 1").to_dict()

        assert data["success"] is True
        assert data["ast"]["type"] == "BinaryExpression"
        assert data["nodeCount"] == 3
        assert data["error"] is None

    def test_syntax_error(self, service):
        result = service.parse("1 +")

        assert not result.success
        assert result.ast is None
        assert result.error.kind == "syntax"
        assert result.error.position == 3

    def test_lexer_error(self, service):
        result = service.parse('"open')

        assert result.error.kind == "lex"
        assert result.error.message == "Unterminated string"

    def test_length_limit(self):
        service = ExpressionService(limits=ExpressionLimits(max_formula_length=10))

        result = service.parse("1 + 2 + 3 + 4")

        assert result.error.kind == "limit"

    def test_nesting_limit(self, service):
        result = service.parse("(" * 40 + "1" + ")" * 40)

        assert result.error.kind == "limit"

    def test_node_count_limit(self):
        service = ExpressionService(limits=ExpressionLimits(max_node_count=5))

        result = service.parse("1 + 2 + 3 + 4")

        assert result.error.kind == "limit"

    def test_recursion_error_is_reported_as_limit(self, service, monkeypatch):
        def explode(source, limits):
            raise RecursionError

        monkeypatch.setattr(service_module, "parse_with_limits", explode)

        result = service.parse("1")

        assert not result.success
        assert result.error.kind == "limit"

    def test_limit_is_logged(self, caplog):
        service = ExpressionService(limits=ExpressionLimits(max_formula_length=3))

        with caplog.at_level(logging.WARNING, logger="flowforge.expressions.service"):
            service.parse("1 + 2")

        assert "Formula rejected" in caplog.text


class TestServiceEvaluate:
    """Tests for ExpressionService.evaluate."""

    def test_evaluate_string(self, service):
        ctx = EvaluationContext(fields={"price": 9.99, "quantity": 3, "taxRate": 0.2})

        result = service.evaluate("ROUND(price * quantity * (1 + taxRate), 2)", ctx)

        assert result.success
        assert result.value == 35.96
        assert result.value_type == "number"

    def test_evaluate_ast(self, service):
        ast = service.parse("x * 2").ast

        first = service.evaluate(ast, EvaluationContext(fields={"x": 2}))
        second = service.evaluate(ast, EvaluationContext(fields={"x": 5}))

        assert first.value == 4
        assert second.value == 10

    def test_value_types(self, service):
        assert service.evaluate("null").value_type == "null"
        assert service.evaluate("[1]").value_type == "array"
        assert service.evaluate("{a: 1}").value_type == "object"
        assert service.evaluate("DATE(2024, 1, 1)").value_type == "date"
        assert service.evaluate("1 > 0").value_type == "boolean"
        assert service.evaluate('"a"').value_type == "string"

    def test_runtime_error(self, service):
        result = service.evaluate("10 / (5 - 5)")

        assert not result.success
        assert result.error.kind == "runtime"
        assert result.error.message == "Division by zero"
        assert result.error.position == 3

    def test_out_of_range_numbers_are_runtime_errors(self, service):
        for formula in (
            '"x" & (9 ** 1024) ** 10',
            "((9 ** 1024) ** 1024) ** 1024",
            "1e308 * 10",
            "ROUND(1e308 * 10, 2)",
        ):
            result = service.evaluate(formula)

            assert not result.success, formula
            assert result.error.kind == "runtime", formula

    def test_round_large_value(self, service):
        result = service.evaluate("ROUND(1e30, 2)")

        assert result.success
        assert result.value == 1e30

    def test_function_error(self, service):
        result = service.evaluate("SQRT(-1)")

        assert result.error.function_name == "SQRT"

    def test_unknown_function(self, service):
        result = service.evaluate("foo()")

        assert result.error.message == "Unknown function: foo"
        assert result.error.function_name == "FOO"

    def test_syntax_error_is_returned(self, service):
        result = service.evaluate("1 +")

        assert not result.success
        assert result.error.kind == "syntax"

    def test_depth_limit_on_prebuilt_ast(self):
        service = ExpressionService(limits=ExpressionLimits(max_ast_depth=5))
        ast = parser_module.parse(" + ".join(["1"] * 10))

        result = service.evaluate(ast)

        assert not result.success
        assert result.error.kind == "limit"

    def test_unexpected_errors_propagate(self, caplog):
        def broken():
            raise RuntimeError("boom")

        registry = FunctionRegistry()
        registry.register(
            FunctionDefinition(
                name="BROKEN",
                description="Always fails",
                category=FunctionCategory.LOGIC,
                parameters=[],
                return_type="any",
                implementation=broken,
            )
        )
        service = ExpressionService(registry=registry, limits=ExpressionLimits())

        with pytest.raises(RuntimeError):
            service.evaluate("BROKEN()")

        assert "Unexpected error" in caplog.text

    def test_result_to_dict(self, service):
        data = service.evaluate("1 / 0").to_dict()

        assert data == {
            "success": False,
            "value": None,
            "valueType": "null",
            "error": {
                "message": "Division by zero",
                "kind": "runtime",
                "position": 2,
                "functionName": None,
            },
        }

    def test_default_context(self, service):
        assert service.evaluate("missing").value is None


class TestServiceFunctions:
    """Tests for function listing and validation passthrough."""

    def test_list_functions(self, service):
        assert len(service.list_functions()) == 65

    def test_get_function(self, service):
        assert service.get_function("sum").name == "SUM"
        assert service.get_function("nope") is None

    def test_list_functions_by_category(self, service):
        names = [f.name for f in service.list_functions_by_category("LOOKUP")]

        assert names == ["LOOKUP", "VLOOKUP"]

    def test_unknown_category(self, service):
        with pytest.raises(ValueError):
            service.list_functions_by_category("astrology")

    def test_validate(self, service):
        result = service.validate("a + b", known_fields=["a"])

        assert not result.valid
        assert result.errors[0].message == "Unknown field: b"

    def test_validate_uses_service_limits(self):
        service = ExpressionService(limits=ExpressionLimits(max_formula_length=3))

        assert not service.validate("1 + 2").valid


# =============================================================================
# Editor tooling
# =============================================================================


class TestEvaluateBatch:
    """Tests for evaluating several formulas together."""

    def test_results_by_key(self, service):
        results = service.evaluate_batch(
            {"a": "1 + 1", "b": '"x" & "y"'}, EvaluationContext()
        )

        assert results["a"].value == 2
        assert results["b"].value == "xy"

    def test_later_formulas_see_earlier_results(self, service):
        ctx = EvaluationContext(fields={"price": 10, "qty": 3})

        results = service.evaluate_batch(
            {"subtotal": "price * qty", "total": "subtotal * 2"}, ctx
        )

        assert results["total"].value == 60

    def test_failures_do_not_stop_the_batch(self, service):
        results = service.evaluate_batch({"bad": "1 / 0", "after": "bad", "ok": "2"})

        assert not results["bad"].success
        assert results["after"].success
        assert results["after"].value is None
        assert results["ok"].value == 2

    def test_caller_context_is_untouched(self, service):
        fields = {"x": 1}

        service.evaluate_batch({"y": "x + 1"}, EvaluationContext(fields=fields))

        assert fields == {"x": 1}


class TestTokenize:
    """Tests for syntax highlighting spans."""

    def test_categories_and_offsets(self, service):
        spans = service.tokenize('IF(total > 100, "big")')

        assert [(s.type, s.value, s.start, s.end) for s in spans] == [
            ("function", "IF", 0, 2),
            ("punctuation", "(", 2, 3),
            ("field", "total", 3, 8),
            ("operator", ">", 9, 10),
            ("literal", "100", 11, 14),
            ("punctuation", ",", 14, 15),
            ("literal", '"big"', 16, 21),
            ("punctuation", ")", 21, 22),
        ]

    def test_keyword_literals(self, service):
        spans = service.tokenize("!done && true")

        assert [s.type for s in spans] == ["operator", "field", "operator", "literal"]

    def test_invalid_character_becomes_error_span(self, service):
        spans = service.tokenize("a + @b")

        assert [s.type for s in spans] == ["field", "operator", "error"]
        assert (spans[-1].value, spans[-1].start, spans[-1].end) == ("@b", 4, 6)

    def test_unterminated_string_becomes_error_span(self, service):
        spans = service.tokenize('x & "abc')

        assert spans[-1].type == "error"
        assert spans[-1].value == '"abc'

    def test_empty_formula(self, service):
        assert service.tokenize("") == []

    def test_to_dict(self, service):
        assert service.tokenize("x")[0].to_dict() == {
            "type": "field",
            "value": "x",
            "start": 0,
            "end": 1,
        }


class TestSuggest:
    """Tests for autocomplete suggestions."""

    def test_function_prefix(self, service):
        suggestions = service.suggest("SU", 2)

        assert labels(suggestions) == ["SUM", "SUMIF"]
        assert suggestions[0].type == "function"
        assert suggestions[0].insert_text == "SUM("
        assert suggestions[0].category == "math"

    def test_prefix_is_case_insensitive(self, service):
        assert labels(service.suggest("1 + su", 6)) == ["SUM", "SUMIF"]

    def test_fields(self, service):
        suggestions = service.suggest("1 + qu", 6, available_fields=["quantity", "price"])

        assert labels(suggestions) == ["quantity"]
        assert suggestions[0].type == "field"
        assert suggestions[0].insert_text == "quantity"

    def test_variables(self, service):
        suggestions = service.suggest("$u", 2, variables=["user", "approver"])

        assert labels(suggestions) == ["$user"]
        assert suggestions[0].type == "variable"

    def test_sorted_by_label(self, service):
        suggestions = service.suggest("a", 1, available_fields=["amount", "Apple"])

        assert labels(suggestions) == ["ABS", "amount", "AND", "Apple", "AVERAGE"]

    def test_empty_prefix_lists_everything(self, service):
        suggestions = service.suggest("1 + ", 4, available_fields=["x"])

        assert len(suggestions) == 68

    def test_context_names(self, service):
        suggestions = service.suggest("us", 2)

        assert labels(suggestions) == ["user"]
        assert suggestions[0].type == "variable"
        assert labels(service.suggest("sys", 3)) == ["system"]

    def test_position_is_clamped(self, service):
        assert labels(service.suggest("SU", 99)) == ["SUM", "SUMIF"]

    def test_uses_text_before_position(self, service):
        assert labels(service.suggest("SU + x", 2)) == ["SUM", "SUMIF"]


# =============================================================================
# Calculated fields
# =============================================================================


class TestDependencyGraph:
    """Tests for calculated-field ordering."""

    def test_topological_order(self, service):
        graph = service.build_dependency_graph(
            [
                CalculatedField("total", "subtotal + tax"),
                CalculatedField("subtotal", "price * qty"),
                CalculatedField("tax", "subtotal * 0.2"),
            ]
        )

        assert graph.order == ["subtotal", "tax", "total"]
        assert graph.cyclic == []
        assert graph.dependencies == {
            "total": ["subtotal", "tax"],
            "subtotal": [],
            "tax": ["subtotal"],
        }
        assert graph.dependents == {
            "total": [],
            "subtotal": ["total", "tax"],
            "tax": ["total"],
        }

    def test_independent_fields_keep_declaration_order(self, service):
        graph = service.build_dependency_graph(
            [CalculatedField("b", "1"), CalculatedField("a", "2")]
        )

        assert graph.order == ["b", "a"]

    def test_cycle_and_downstream_are_excluded(self, service, caplog):
        with caplog.at_level(logging.WARNING, logger="flowforge.expressions.service"):
            graph = service.build_dependency_graph(
                [
                    CalculatedField("a", "b + 1"),
                    CalculatedField("b", "a + 1"),
                    CalculatedField("c", "a * 2"),
                    CalculatedField("d", "5"),
                ]
            )

        assert graph.order == ["d"]
        assert graph.cyclic == ["a", "b", "c"]
        assert "Circular reference" in caplog.text

    def test_self_reference(self, service):
        graph = service.build_dependency_graph([CalculatedField("x", "x + 1")])

        assert graph.cyclic == ["x"]

    def test_to_dict(self, service):
        data = service.build_dependency_graph([CalculatedField("a", "1")]).to_dict()

        assert data == {
            "order": ["a"],
            "dependencies": {"a": []},
            "dependents": {"a": []},
            "cyclic": [],
        }


class TestRecalculate:
    """Tests for recalculating calculated fields."""

    def test_values_flow_through_dependencies(self, service):
        result = service.recalculate(
            [
                CalculatedField("total", "subtotal + tax"),
                CalculatedField("subtotal", "price * qty"),
                CalculatedField("tax", "ROUND(subtotal * 0.2, 2)"),
            ],
            {"price": 10, "qty": 3},
        )

        assert result.values["subtotal"] == 30
        assert result.values["tax"] == 6
        assert result.values["total"] == 36
        assert result.errors == {}

    def test_failed_field_uses_fallback(self, service):
        result = service.recalculate(
            [
                CalculatedField("ratio", "done / total", fallback_value=0),
                CalculatedField("percent", "ratio * 100"),
            ],
            {"done": 3, "total": 0},
        )

        assert result.values["ratio"] == 0
        assert result.values["percent"] == 0
        assert result.errors["ratio"].kind == "runtime"
        assert "percent" not in result.errors

    def test_cyclic_fields_get_fallback(self, service):
        result = service.recalculate(
            [
                CalculatedField("a", "b", fallback_value="n/a"),
                CalculatedField("b", "a"),
            ],
            {},
        )

        assert result.values == {"a": "n/a", "b": None}
        assert result.errors["a"].kind == "dependency"
        assert result.errors["a"].message == "Circular reference involving 'a'"

    def test_context_supplies_clock_and_datasets(self, service):
        ctx = EvaluationContext(
            fields={"ownerId": 1},
            datasets={"employees": [{"id": 1, "name": "Ada"}]},
        )

        result = service.recalculate(
            [
                CalculatedField("owner", 'LOOKUP("employees", "id", ownerId, "name")'),
                CalculatedField("due", 'DATEADD(DATE(2024, 1, 1), 1, "month")'),
            ],
            {},
            ctx,
        )

        assert result.values["owner"] == "Ada"
        assert result.values["due"] == date(2024, 2, 1)

    def test_inputs_are_untouched(self, service):
        values = {"x": 1}

        service.recalculate([CalculatedField("y", "x + 1")], values)

        assert values == {"x": 1}


# =============================================================================
# Module-level helpers
# =============================================================================


class TestConvenienceFunctions:
    """Tests for the package-level helpers backed by a default service."""

    def test_evaluate(self):
        result = evaluate(
            'status == "open" && total > 100',
            EvaluationContext(fields={"status": "open", "total": 250}),
        )

        assert result.value is True

    def test_parse(self):
        assert parse("1 +").error.kind == "syntax"

    def test_validate(self):
        assert not validate("FOO()").valid

    def test_list_functions(self):
        assert len(list_functions()) == 65
