"""Error types for the FlowForge expression engine.

Every failure caused by a user-authored formula is an ExpressionError:
- LexerError: invalid character, unterminated string, malformed number
- ParseError: malformed token sequence, empty input, unexpected token
- EvaluationError: division by zero, bad function arguments, unknown function
- LimitExceededError: formula too long, too deep, or too large

The service facade turns these into result objects. Anything else that
escapes the engine is a defect, not a formula error.
"""


class ExpressionError(Exception):
    """Base class for formula errors.

    Attributes:
        message: Human-readable message without position suffix
        position: Character offset in the source, or None if unknown
    """

    kind = "error"

    def __init__(self, message: str, position: int | None = None):
        self.message = message
        self.position = position
        super().__init__(message)


class LexerError(ExpressionError):
    """Error during lexical analysis."""

    kind = "lex"

    def __init__(self, message: str, position: int, line: int = 1, column: int = 1):
        self.line = line
        self.column = column
        super().__init__(message, position)

    def __str__(self) -> str:
        return f"{self.message} at line {self.line}, column {self.column}"


class ParseError(ExpressionError):
    """Error during parsing."""

    kind = "syntax"

    def __str__(self) -> str:
        if self.position is None:
            return self.message
        return f"{self.message} at position {self.position}"


class EvaluationError(ExpressionError):
    """Error during expression evaluation."""

    kind = "runtime"

    def __init__(
        self,
        message: str,
        position: int | None = None,
        function_name: str | None = None,
    ):
        self.function_name = function_name
        super().__init__(message, position)


class LimitExceededError(ExpressionError):
    """A formula exceeded a configured resource bound."""

    kind = "limit"
