"""Formula language for FlowForge calculated fields and workflow conditions.

This module provides:
- Lexer: Tokenizes formula strings
- Parser: Produces AST from tokens
- Evaluator: Evaluates AST against a context of fields, variables and datasets
- FunctionRegistry: Registry of the built-in functions
- Validator: Static syntax and reference checks
- ExpressionService: Facade returning result objects instead of raising
"""

from flowforge.expressions.builtins import build_default_registry, default_registry
from flowforge.expressions.config import ExpressionLimits
from flowforge.expressions.errors import (
    EvaluationError,
    ExpressionError,
    LexerError,
    LimitExceededError,
    ParseError,
)
from flowforge.expressions.evaluator import EvaluationContext, Evaluator
from flowforge.expressions.functions import (
    FunctionCategory,
    FunctionDefinition,
    FunctionExample,
    FunctionParameter,
    FunctionRegistry,
)
from flowforge.expressions.lexer import Lexer, Token, TokenType
from flowforge.expressions.parser import (
    ASTNode,
    ArrayExpression,
    BinaryExpression,
    CallExpression,
    ConditionalExpression,
    Identifier,
    Literal,
    LiteralKind,
    LogicalExpression,
    MemberExpression,
    ObjectExpression,
    Parser,
    UnaryExpression,
)
from flowforge.expressions.service import (
    CalculatedField,
    DependencyGraph,
    EvaluationResult,
    ExpressionErrorInfo,
    ExpressionService,
    HighlightToken,
    ParseResult,
    RecalculationResult,
    Suggestion,
    evaluate,
    list_functions,
    parse,
    validate,
)
from flowforge.expressions.validator import ValidationIssue, ValidationResult, Validator

__all__ = [
    # Errors
    "EvaluationError",
    "ExpressionError",
    "LexerError",
    "LimitExceededError",
    "ParseError",
    # Config
    "ExpressionLimits",
    # Lexer
    "Lexer",
    "Token",
    "TokenType",
    # Parser
    "ASTNode",
    "ArrayExpression",
    "BinaryExpression",
    "CallExpression",
    "ConditionalExpression",
    "Identifier",
    "Literal",
    "LiteralKind",
    "LogicalExpression",
    "MemberExpression",
    "ObjectExpression",
    "Parser",
    "UnaryExpression",
    # Functions
    "FunctionCategory",
    "FunctionDefinition",
    "FunctionExample",
    "FunctionParameter",
    "FunctionRegistry",
    "build_default_registry",
    "default_registry",
    # Evaluator
    "EvaluationContext",
    "Evaluator",
    # Validator
    "ValidationIssue",
    "ValidationResult",
    "Validator",
    # Service
    "CalculatedField",
    "DependencyGraph",
    "EvaluationResult",
    "ExpressionErrorInfo",
    "ExpressionService",
    "HighlightToken",
    "ParseResult",
    "RecalculationResult",
    "Suggestion",
    "evaluate",
    "list_functions",
    "parse",
    "validate",
]
