"""Tests for the formula parser and AST utilities."""

import pytest

from flowforge.expressions import (
    ArrayExpression,
    BinaryExpression,
    CallExpression,
    ConditionalExpression,
    ExpressionLimits,
    Identifier,
    LexerError,
    LimitExceededError,
    Literal,
    LiteralKind,
    LogicalExpression,
    MemberExpression,
    ObjectExpression,
    ParseError,
    Parser,
    UnaryExpression,
)
from flowforge.expressions.parser import measure, parse, parse_with_limits, to_dict


class TestParserLiterals:
    """Tests for literal parsing."""

    def test_parse_integer(self):
        ast = parse("42")

        assert isinstance(ast, Literal)
        assert ast.kind == LiteralKind.NUMBER
        assert ast.raw == "42"
        assert ast.value == 42
        assert isinstance(ast.value, int)

    def test_parse_decimal_and_exponent(self):
        assert parse("3.14").value == 3.14
        assert parse("1e3").value == 1000.0
        assert isinstance(parse("1e3").value, float)

    def test_parse_string(self):
        ast = parse('"hello"')

        assert ast == Literal("hello", LiteralKind.STRING, position=0)
        assert ast.value == "hello"

    def test_parse_booleans_case_insensitive(self):
        assert parse("true").value is True
        assert parse("FALSE").value is False
        assert parse("True").kind == LiteralKind.BOOLEAN

    def test_parse_null(self):
        ast = parse("null")

        assert ast.kind == LiteralKind.NULL
        assert ast.value is None

    def test_parse_array_literal(self):
        ast = parse("[1, 2, x]")

        assert isinstance(ast, ArrayExpression)
        assert len(ast.elements) == 3
        assert ast.elements[2] == Identifier("x", position=7)

    def test_parse_empty_array(self):
        ast = parse("[]")

        assert ast == ArrayExpression((), position=0)

    def test_parse_object_literal(self):
        ast = parse('{name: "Ada", "job title": role}')

        assert isinstance(ast, ObjectExpression)
        assert [key for key, _ in ast.properties] == ["name", "job title"]
        assert ast.properties[1][1] == Identifier("role", position=27)

    def test_parse_empty_object(self):
        assert parse("{}") == ObjectExpression((), position=0)


class TestParserOperators:
    """Tests for operator precedence and associativity."""

    def test_multiplication_binds_tighter_than_addition(self):
        ast = parse("1 + 2 * 3")

        assert isinstance(ast, BinaryExpression)
        assert ast.operator == "+"
        assert isinstance(ast.right, BinaryExpression)
        assert ast.right.operator == "*"

    def test_subtraction_is_left_associative(self):
        ast = parse("10 - 4 - 3")

        assert ast.operator == "-"
        assert isinstance(ast.left, BinaryExpression)
        assert ast.left.operator == "-"
        assert ast.right.value == 3

    def test_power_is_right_associative(self):
        ast = parse("2 ** 3 ** 2")

        assert ast.operator == "**"
        assert ast.left.value == 2
        assert isinstance(ast.right, BinaryExpression)
        assert ast.right.operator == "**"

    def test_unary_minus_binds_tighter_than_power(self):
        ast = parse("-2 ** 2")

        assert isinstance(ast, BinaryExpression)
        assert ast.operator == "**"
        assert isinstance(ast.left, UnaryExpression)
        assert ast.left.operator == "-"

    def test_concat_shares_additive_level(self):
        ast = parse('a & "x" + b')

        assert ast.operator == "+"
        assert ast.left.operator == "&"

    def test_comparison_binds_tighter_than_equality(self):
        ast = parse("a < b == c > d")

        assert ast.operator == "=="
        assert ast.left.operator == "<"
        assert ast.right.operator == ">"

    def test_and_binds_tighter_than_or(self):
        ast = parse("a || b && c")

        assert isinstance(ast, LogicalExpression)
        assert ast.operator == "||"
        assert isinstance(ast.right, LogicalExpression)
        assert ast.right.operator == "&&"

    def test_ternary_is_right_associative(self):
        ast = parse("a ? b : c ? d : e")

        assert isinstance(ast, ConditionalExpression)
        assert ast.test == Identifier("a", position=0)
        assert isinstance(ast.alternate, ConditionalExpression)

    def test_ternary_has_lowest_precedence(self):
        ast = parse("x > 1 || y ? 1 + 1 : 0")

        assert isinstance(ast, ConditionalExpression)
        assert isinstance(ast.test, LogicalExpression)
        assert isinstance(ast.consequent, BinaryExpression)

    def test_not_operator(self):
        ast = parse("!!done")

        assert isinstance(ast, UnaryExpression)
        assert ast.operator == "!"
        assert isinstance(ast.operand, UnaryExpression)

    def test_double_negation_is_allowed(self):
        ast = parse("1 - - 2")

        assert ast.operator == "-"
        assert isinstance(ast.right, UnaryExpression)

    def test_grouping_overrides_precedence(self):
        ast = parse("(1 + 2) * 3")

        assert ast.operator == "*"
        assert ast.left.operator == "+"

    def test_binary_position_is_operator_offset(self):
        ast = parse("price * qty")

        assert ast.position == 6


class TestParserPostfix:
    """Tests for member access, indexing and calls."""

    def test_member_access(self):
        ast = parse("order.customer.name")

        assert isinstance(ast, MemberExpression)
        assert ast.property == "name"
        assert not ast.computed
        assert isinstance(ast.object, MemberExpression)
        assert ast.object.object == Identifier("order", position=0)

    def test_index_access(self):
        ast = parse("items[0]")

        assert isinstance(ast, MemberExpression)
        assert ast.computed
        assert ast.property == Literal("0", LiteralKind.NUMBER, position=6)

    def test_function_call(self):
        ast = parse("ROUND(total, 2)")

        assert isinstance(ast, CallExpression)
        assert ast.callee == "ROUND"
        assert len(ast.arguments) == 2
        assert ast.position == 0

    def test_function_call_no_args(self):
        ast = parse("NOW()")

        assert ast == CallExpression("NOW", (), position=0)

    def test_nested_calls(self):
        ast = parse("IF(ISBLANK(x), 0, SUM(a, b))")

        assert isinstance(ast.arguments[0], CallExpression)
        assert ast.arguments[2].callee == "SUM"

    def test_call_result_member_access(self):
        ast = parse("SPLIT(s, ',').length")

        assert isinstance(ast, MemberExpression)
        assert isinstance(ast.object, CallExpression)

    def test_only_named_functions_can_be_called(self):
        with pytest.raises(ParseError) as exc_info:
            parse("a.b(1)")

        assert "Only named functions" in exc_info.value.message
        assert exc_info.value.position == 3

    def test_variable_identifier(self):
        assert parse("$user") == Identifier("$user", position=0)


class TestParserErrors:
    """Tests for syntax errors."""

    def test_empty_expression(self):
        with pytest.raises(ParseError) as exc_info:
            parse("   ")

        assert exc_info.value.message == "Empty expression"
        assert exc_info.value.position == 0

    def test_repeated_operator(self):
        with pytest.raises(ParseError) as exc_info:
            parse("1 + + 2")

        assert exc_info.value.message == "Unexpected operator '+' after '+'"
        assert exc_info.value.position == 4

    def test_trailing_operator(self):
        with pytest.raises(ParseError) as exc_info:
            parse("1 +")

        assert exc_info.value.message == "Unexpected end of expression"
        assert exc_info.value.position == 3

    def test_unclosed_paren(self):
        with pytest.raises(ParseError) as exc_info:
            parse("(1 + 2")

        assert "')'" in exc_info.value.message

    def test_unclosed_call(self):
        with pytest.raises(ParseError):
            parse("SUM(1, 2")

    def test_trailing_tokens(self):
        with pytest.raises(ParseError) as exc_info:
            parse("1 2")

        assert exc_info.value.message == "Unexpected token '2'"
        assert exc_info.value.position == 2

    def test_missing_ternary_colon(self):
        with pytest.raises(ParseError) as exc_info:
            parse("a ? b")

        assert "':'" in exc_info.value.message

    def test_invalid_object_key(self):
        with pytest.raises(ParseError):
            parse("{1: 2}")

    def test_missing_property_name(self):
        with pytest.raises(ParseError):
            parse("order.")

    def test_lexer_errors_propagate(self):
        with pytest.raises(LexerError):
            parse("a @ b")

    def test_error_str_includes_position(self):
        with pytest.raises(ParseError) as exc_info:
            parse("1 2")

        assert str(exc_info.value) == "Unexpected token '2' at position 2"

    def test_nesting_limit(self):
        source = "(" * 10 + "1" + ")" * 10

        with pytest.raises(LimitExceededError):
            Parser(source, max_depth=5).parse()

    def test_nesting_within_limit(self):
        source = "(" * 5 + "1" + ")" * 5

        assert Parser(source, max_depth=10).parse().value == 1

    def test_default_nesting_limit_on_unary_chain(self):
        with pytest.raises(LimitExceededError):
            parse("-" * 100 + "1")


class TestASTUtilities:
    """Tests for measure, to_dict and parse_with_limits."""

    def test_measure_single_node(self):
        assert measure(parse("x")) == (1, 1)

    def test_measure_tree(self):
        # + at the root, (* 2 3) on the right
        count, depth = measure(parse("1 + 2 * 3"))

        assert count == 5
        assert depth == 3

    def test_measure_counts_call_arguments(self):
        count, depth = measure(parse("SUM(1, 2, 3)"))

        assert count == 4
        assert depth == 2

    def test_to_dict(self):
        result = to_dict(parse("a + 1"))

        assert result == {
            "type": "BinaryExpression",
            "operator": "+",
            "left": {"type": "Identifier", "name": "a", "position": 0},
            "right": {
                "type": "Literal",
                "kind": "number",
                "value": 1,
                "raw": "1",
                "position": 4,
            },
            "position": 2,
        }

    def test_to_dict_call_and_member(self):
        result = to_dict(parse("LEN(items[0].name)"))

        assert result["type"] == "CallExpression"
        assert result["callee"] == "LEN"
        member = result["arguments"][0]
        assert member["property"] == "name"
        assert member["object"]["computed"] is True

    def test_parse_with_limits_returns_metrics(self):
        ast, node_count, depth = parse_with_limits("1 + 2", ExpressionLimits())

        assert isinstance(ast, BinaryExpression)
        assert node_count == 3
        assert depth == 2

    def test_parse_with_limits_rejects_long_formula(self):
        limits = ExpressionLimits(max_formula_length=10)

        with pytest.raises(LimitExceededError) as exc_info:
            parse_with_limits("1 + 2 + 3 + 4", limits)

        assert "length" in exc_info.value.message

    def test_parse_with_limits_length_is_checked_before_lexing(self):
        limits = ExpressionLimits(max_formula_length=5)

        # Invalid characters would raise LexerError if lexing ran first
        with pytest.raises(LimitExceededError):
            parse_with_limits("@@@@@@@@", limits)

    def test_parse_with_limits_rejects_large_tree(self):
        limits = ExpressionLimits(max_node_count=10)
        source = " + ".join(["1"] * 20)

        with pytest.raises(LimitExceededError) as exc_info:
            parse_with_limits(source, limits)

        assert "nodes" in exc_info.value.message

    def test_parse_with_limits_rejects_deep_tree(self):
        limits = ExpressionLimits(max_ast_depth=5)
        source = " + ".join(["1"] * 10)

        with pytest.raises(LimitExceededError) as exc_info:
            parse_with_limits(source, limits)

        assert "depth" in exc_info.value.message

    def test_long_flat_chain_parses(self):
        source = " + ".join(str(i) for i in range(100))
        ast, node_count, _ = parse_with_limits(source, ExpressionLimits())

        assert node_count == 199
        assert isinstance(ast, BinaryExpression)
