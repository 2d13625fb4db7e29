"""Parser for the FlowForge formula language.

Converts a list of tokens into an Abstract Syntax Tree (AST).
Uses recursive descent parsing with operator precedence.

Operator Precedence (lowest to highest):
1. ? : (ternary, right-associative)
2. ||
3. &&
4. == !=
5. < <= > >=
6. + - & (string concatenation)
7. * / %
8. ** (right-associative)
9. ! - (unary)
10. . (member access) [] (index) () (function call)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from flowforge.expressions.config import DEFAULT_MAX_NESTING_DEPTH, ExpressionLimits
from flowforge.expressions.errors import LimitExceededError, ParseError
from flowforge.expressions.lexer import Lexer, Token, TokenType


# -----------------------------------------------------------------------------
# AST Node Types
# -----------------------------------------------------------------------------


class LiteralKind(Enum):
    """The kind of value a Literal node holds."""

    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    NULL = "null"


@dataclass(frozen=True)
class ASTNode:
    """Base class for AST nodes."""
    pass


@dataclass(frozen=True)
class Literal(ASTNode):
    """A literal value (number, string, boolean, null).

    Numbers keep their source text in `raw`; `value` converts it when read.
    """

    raw: str
    kind: LiteralKind
    position: int = 0

    @property
    def value(self) -> Any:
        if self.kind == LiteralKind.NUMBER:
            if any(c in self.raw for c in ".eE"):
                return float(self.raw)
            return int(self.raw)
        if self.kind == LiteralKind.BOOLEAN:
            return self.raw.lower() == "true"
        if self.kind == LiteralKind.NULL:
            return None
        return self.raw


@dataclass(frozen=True)
class Identifier(ASTNode):
    """A field or variable reference."""

    name: str
    position: int = 0


@dataclass(frozen=True)
class MemberExpression(ASTNode):
    """Member access: `order.total` (property is a name) or `items[0]`
    (computed, property is an expression)."""

    object: ASTNode
    property: "str | ASTNode"
    computed: bool = False
    position: int = 0


@dataclass(frozen=True)
class ArrayExpression(ASTNode):
    """Array literal (e.g., [1, 2, 3])."""

    elements: tuple[ASTNode, ...]
    position: int = 0


@dataclass(frozen=True)
class ObjectExpression(ASTNode):
    """Object literal (e.g., {name: "Ada", "role": role}), keys in source order."""

    properties: tuple[tuple[str, ASTNode], ...]
    position: int = 0


@dataclass(frozen=True)
class UnaryExpression(ASTNode):
    """Unary operation (-x, !x)."""

    operator: str
    operand: ASTNode
    position: int = 0


@dataclass(frozen=True)
class BinaryExpression(ASTNode):
    """Arithmetic, comparison, equality or concatenation (a + b, x == y, s & t)."""

    operator: str
    left: ASTNode
    right: ASTNode
    position: int = 0


@dataclass(frozen=True)
class LogicalExpression(ASTNode):
    """Short-circuit logical operation (a && b, a || b)."""

    operator: str
    left: ASTNode
    right: ASTNode
    position: int = 0


@dataclass(frozen=True)
class ConditionalExpression(ASTNode):
    """Ternary (test ? consequent : alternate)."""

    test: ASTNode
    consequent: ASTNode
    alternate: ASTNode
    position: int = 0


@dataclass(frozen=True)
class CallExpression(ASTNode):
    """Function call (e.g., ROUND(total, 2))."""

    callee: str
    arguments: tuple[ASTNode, ...]
    position: int = 0


_LITERAL_KEYWORDS = {
    "true": LiteralKind.BOOLEAN,
    "false": LiteralKind.BOOLEAN,
    "null": LiteralKind.NULL,
}

_EQUALITY_OPS = {
    TokenType.EQ: "==",
    TokenType.NEQ: "!=",
}

_RELATIONAL_OPS = {
    TokenType.LT: "<",
    TokenType.LTE: "<=",
    TokenType.GT: ">",
    TokenType.GTE: ">=",
}

_ADDITIVE_OPS = {
    TokenType.PLUS: "+",
    TokenType.MINUS: "-",
    TokenType.CONCAT: "&",
}

_MULTIPLICATIVE_OPS = {
    TokenType.MULTIPLY: "*",
    TokenType.DIVIDE: "/",
    TokenType.MODULO: "%",
}

_OPERATOR_TOKENS = (
    set(_EQUALITY_OPS)
    | set(_RELATIONAL_OPS)
    | set(_ADDITIVE_OPS)
    | set(_MULTIPLICATIVE_OPS)
    | {TokenType.POWER, TokenType.AND, TokenType.OR}
)


# -----------------------------------------------------------------------------
# Parser
# -----------------------------------------------------------------------------


class Parser:
    """Recursive descent parser for the formula language.

    Raises LexerError, ParseError or LimitExceededError; the first error
    stops parsing.

    Usage:
        parser = Parser('IF(total > 100, "bulk", "standard")')
        ast = parser.parse()
    """

    def __init__(self, source: str, max_depth: int = DEFAULT_MAX_NESTING_DEPTH):
        self.source = source
        self.max_depth = max_depth
        self.tokens = Lexer(source).tokenize()
        self.position = 0
        self._depth = 0

    def parse(self) -> ASTNode:
        """Parse the formula and return the AST root."""
        if self.tokens[0].type == TokenType.EOF:
            raise ParseError("Empty expression", 0)

        ast = self._parse_ternary()

        if not self._is_at_end():
            token = self._current()
            raise ParseError(f"Unexpected token '{token.value}'", token.position)

        return ast

    # -------------------------------------------------------------------------
    # Helper methods
    # -------------------------------------------------------------------------

    def _current(self) -> Token:
        """Get current token."""
        if self.position >= len(self.tokens):
            return self.tokens[-1]
        return self.tokens[self.position]

    def _previous(self) -> Token | None:
        if self.position == 0:
            return None
        return self.tokens[self.position - 1]

    def _is_at_end(self) -> bool:
        """Check if we've consumed all tokens."""
        return self._current().type == TokenType.EOF

    def _advance(self) -> Token:
        """Consume and return current token."""
        token = self._current()
        if token.type != TokenType.EOF:
            self.position += 1
        return token

    def _match(self, *types: TokenType) -> bool:
        """Check if current token matches any of the given types."""
        return self._current().type in types

    def _consume(self, token_type: TokenType, message: str) -> Token:
        """Consume a token of the expected type, or raise error."""
        if self._current().type == token_type:
            return self._advance()
        raise ParseError(message, self._current().position)

    def _enter(self) -> None:
        self._depth += 1
        if self._depth > self.max_depth:
            raise LimitExceededError(
                f"Expression nesting exceeds maximum depth of {self.max_depth}",
                self._current().position,
            )

    def _leave(self) -> None:
        self._depth -= 1

    # -------------------------------------------------------------------------
    # Parsing methods (in order of precedence, lowest to highest)
    # -------------------------------------------------------------------------

    def _parse_ternary(self) -> ASTNode:
        """Parse ternary expression (lowest precedence, right-associative)."""
        self._enter()
        try:
            test = self._parse_or()

            if not self._match(TokenType.QUESTION):
                return test

            self._advance()
            consequent = self._parse_ternary()
            self._consume(TokenType.COLON, "Expected ':' in ternary expression")
            alternate = self._parse_ternary()
            return ConditionalExpression(
                test, consequent, alternate, position=_position_of(test)
            )
        finally:
            self._leave()

    def _parse_or(self) -> ASTNode:
        """Parse OR expression."""
        left = self._parse_and()

        while self._match(TokenType.OR):
            op_token = self._advance()
            right = self._parse_and()
            left = LogicalExpression("||", left, right, position=op_token.position)

        return left

    def _parse_and(self) -> ASTNode:
        """Parse AND expression."""
        left = self._parse_equality()

        while self._match(TokenType.AND):
            op_token = self._advance()
            right = self._parse_equality()
            left = LogicalExpression("&&", left, right, position=op_token.position)

        return left

    def _parse_equality(self) -> ASTNode:
        """Parse equality expression (==, !=)."""
        return self._parse_binary_level(_EQUALITY_OPS, self._parse_relational)

    def _parse_relational(self) -> ASTNode:
        """Parse relational expression (<, <=, >, >=)."""
        return self._parse_binary_level(_RELATIONAL_OPS, self._parse_additive)

    def _parse_additive(self) -> ASTNode:
        """Parse additive expression (+, -, &)."""
        return self._parse_binary_level(_ADDITIVE_OPS, self._parse_multiplicative)

    def _parse_multiplicative(self) -> ASTNode:
        """Parse multiplicative expression (*, /, %)."""
        return self._parse_binary_level(_MULTIPLICATIVE_OPS, self._parse_power)

    def _parse_binary_level(self, operators: dict[TokenType, str], operand) -> ASTNode:
        """Parse a left-associative chain of binary operators at one level."""
        left = operand()

        while self._current().type in operators:
            op_token = self._advance()
            right = operand()
            left = BinaryExpression(
                operators[op_token.type], left, right, position=op_token.position
            )

        return left

    def _parse_power(self) -> ASTNode:
        """Parse exponentiation (right-associative)."""
        left = self._parse_unary()

        if not self._match(TokenType.POWER):
            return left

        op_token = self._advance()
        self._enter()
        try:
            right = self._parse_power()
        finally:
            self._leave()
        return BinaryExpression("**", left, right, position=op_token.position)

    def _parse_unary(self) -> ASTNode:
        """Parse unary expression (!, -)."""
        if self._match(TokenType.NOT, TokenType.MINUS):
            op_token = self._advance()
            self._enter()
            try:
                operand = self._parse_unary()
            finally:
                self._leave()
            return UnaryExpression(op_token.value, operand, position=op_token.position)

        return self._parse_postfix()

    def _parse_postfix(self) -> ASTNode:
        """Parse postfix expressions (member access, index, function call)."""
        expr = self._parse_primary()

        while True:
            if self._match(TokenType.DOT):
                self._advance()
                member_token = self._consume(
                    TokenType.IDENTIFIER, "Expected property name after '.'"
                )
                expr = MemberExpression(
                    expr, member_token.value, position=_position_of(expr)
                )

            elif self._match(TokenType.LBRACKET):
                self._advance()
                index = self._parse_ternary()
                self._consume(TokenType.RBRACKET, "Expected ']' after index")
                expr = MemberExpression(
                    expr, index, computed=True, position=_position_of(expr)
                )

            elif self._match(TokenType.LPAREN):
                if not isinstance(expr, Identifier):
                    raise ParseError(
                        "Only named functions can be called", self._current().position
                    )
                expr = self._parse_function_call(expr)

            else:
                break

        return expr

    def _parse_primary(self) -> ASTNode:
        """Parse primary expression (literals, identifiers, grouped expressions)."""
        token = self._current()

        if token.type == TokenType.NUMBER:
            self._advance()
            return Literal(token.value, LiteralKind.NUMBER, position=token.position)

        if token.type == TokenType.STRING:
            self._advance()
            return Literal(token.value, LiteralKind.STRING, position=token.position)

        # Identifier, or true/false/null
        if token.type == TokenType.IDENTIFIER:
            self._advance()
            kind = _LITERAL_KEYWORDS.get(token.value.lower())
            if kind is not None:
                return Literal(token.value, kind, position=token.position)
            return Identifier(token.value, position=token.position)

        # Grouped expression
        if token.type == TokenType.LPAREN:
            self._advance()
            expr = self._parse_ternary()
            self._consume(TokenType.RPAREN, "Expected ')' after expression")
            return expr

        if token.type == TokenType.LBRACKET:
            return self._parse_array_literal()

        if token.type == TokenType.LBRACE:
            return self._parse_object_literal()

        raise self._unexpected(token)

    def _unexpected(self, token: Token) -> ParseError:
        if token.type == TokenType.EOF:
            return ParseError("Unexpected end of expression", token.position)

        previous = self._previous()
        if (
            token.type in _OPERATOR_TOKENS
            and previous is not None
            and (previous.type in _OPERATOR_TOKENS or previous.type == TokenType.NOT)
        ):
            return ParseError(
                f"Unexpected operator '{token.value}' after '{previous.value}'",
                token.position,
            )

        return ParseError(f"Unexpected token '{token.value}'", token.position)

    def _parse_function_call(self, callee: Identifier) -> CallExpression:
        """Parse a function call (arguments in parentheses)."""
        self._consume(TokenType.LPAREN, "Expected '(' after function name")

        arguments: list[ASTNode] = []

        if not self._match(TokenType.RPAREN):
            arguments.append(self._parse_ternary())

            while self._match(TokenType.COMMA):
                self._advance()
                arguments.append(self._parse_ternary())

        self._consume(TokenType.RPAREN, "Expected ')' after arguments")

        return CallExpression(callee.name, tuple(arguments), position=callee.position)

    def _parse_array_literal(self) -> ArrayExpression:
        """Parse an array literal [a, b, c]."""
        start = self._consume(TokenType.LBRACKET, "Expected '['")

        elements: list[ASTNode] = []

        if not self._match(TokenType.RBRACKET):
            elements.append(self._parse_ternary())

            while self._match(TokenType.COMMA):
                self._advance()
                elements.append(self._parse_ternary())

        self._consume(TokenType.RBRACKET, "Expected ']' after array elements")

        return ArrayExpression(tuple(elements), position=start.position)

    def _parse_object_literal(self) -> ObjectExpression:
        """Parse an object literal {key: value, "other key": value}."""
        start = self._consume(TokenType.LBRACE, "Expected '{'")

        properties: list[tuple[str, ASTNode]] = []

        if not self._match(TokenType.RBRACE):
            properties.append(self._parse_object_pair())

            while self._match(TokenType.COMMA):
                self._advance()
                properties.append(self._parse_object_pair())

        self._consume(TokenType.RBRACE, "Expected '}' after object properties")

        return ObjectExpression(tuple(properties), position=start.position)

    def _parse_object_pair(self) -> tuple[str, ASTNode]:
        """Parse a key-value pair in an object literal."""
        # Key can be string or identifier
        if self._match(TokenType.STRING, TokenType.IDENTIFIER):
            key = self._advance().value
        else:
            raise ParseError(
                "Expected string or identifier as object key", self._current().position
            )

        self._consume(TokenType.COLON, "Expected ':' after object key")

        return key, self._parse_ternary()


def _position_of(node: ASTNode) -> int:
    return getattr(node, "position", 0)


# -----------------------------------------------------------------------------
# AST utilities
# -----------------------------------------------------------------------------


def child_nodes(node: ASTNode) -> tuple[ASTNode, ...]:
    """Return the direct children of a node, in evaluation order."""
    if isinstance(node, MemberExpression):
        if node.computed:
            return (node.object, node.property)
        return (node.object,)
    if isinstance(node, (BinaryExpression, LogicalExpression)):
        return (node.left, node.right)
    if isinstance(node, UnaryExpression):
        return (node.operand,)
    if isinstance(node, ConditionalExpression):
        return (node.test, node.consequent, node.alternate)
    if isinstance(node, CallExpression):
        return node.arguments
    if isinstance(node, ArrayExpression):
        return node.elements
    if isinstance(node, ObjectExpression):
        return tuple(value for _, value in node.properties)
    return ()


def measure(node: ASTNode) -> tuple[int, int]:
    """Return (node_count, depth) of a tree without recursing."""
    count = 0
    max_depth = 0
    stack = [(node, 1)]
    while stack:
        current, depth = stack.pop()
        count += 1
        max_depth = max(max_depth, depth)
        for child in child_nodes(current):
            stack.append((child, depth + 1))
    return count, max_depth


def to_dict(node: ASTNode) -> dict[str, Any]:
    """Export a tree as JSON-compatible dicts (used by the parse endpoint)."""
    result: dict[str, Any] = {"type": type(node).__name__}

    if isinstance(node, Literal):
        result.update(kind=node.kind.value, value=node.value, raw=node.raw)
    elif isinstance(node, Identifier):
        result["name"] = node.name
    elif isinstance(node, MemberExpression):
        result["object"] = to_dict(node.object)
        result["computed"] = node.computed
        result["property"] = to_dict(node.property) if node.computed else node.property
    elif isinstance(node, (BinaryExpression, LogicalExpression)):
        result.update(
            operator=node.operator, left=to_dict(node.left), right=to_dict(node.right)
        )
    elif isinstance(node, UnaryExpression):
        result.update(operator=node.operator, operand=to_dict(node.operand))
    elif isinstance(node, ConditionalExpression):
        result.update(
            test=to_dict(node.test),
            consequent=to_dict(node.consequent),
            alternate=to_dict(node.alternate),
        )
    elif isinstance(node, CallExpression):
        result.update(
            callee=node.callee, arguments=[to_dict(arg) for arg in node.arguments]
        )
    elif isinstance(node, ArrayExpression):
        result["elements"] = [to_dict(el) for el in node.elements]
    elif isinstance(node, ObjectExpression):
        result["properties"] = [
            {"key": key, "value": to_dict(value)} for key, value in node.properties
        ]

    result["position"] = _position_of(node)
    return result


def parse_with_limits(
    source: str, limits: ExpressionLimits
) -> tuple[ASTNode, int, int]:
    """Parse a formula, enforcing every bound in `limits`.

    Length is checked before lexing, nesting while parsing, and tree
    depth/size after parsing.

    Returns:
        (ast, node_count, depth)

    Raises:
        LimitExceededError: If a bound is exceeded
        LexerError, ParseError: If the formula is malformed
    """
    if len(source) > limits.max_formula_length:
        raise LimitExceededError(
            f"Formula exceeds maximum length of {limits.max_formula_length} characters",
            limits.max_formula_length,
        )

    ast = Parser(source, limits.max_nesting_depth).parse()

    node_count, depth = measure(ast)
    if depth > limits.max_ast_depth:
        raise LimitExceededError(
            f"Formula exceeds maximum depth of {limits.max_ast_depth}", 0
        )
    if node_count > limits.max_node_count:
        raise LimitExceededError(
            f"Formula exceeds maximum size of {limits.max_node_count} nodes", 0
        )

    return ast, node_count, depth


def parse(source: str, max_depth: int = DEFAULT_MAX_NESTING_DEPTH) -> ASTNode:
    """Convenience function to parse a formula string.

    Args:
        source: The formula string
        max_depth: Maximum nesting of grouped/unary/power sub-expressions

    Returns:
        The AST root node
    """
    return Parser(source, max_depth).parse()
