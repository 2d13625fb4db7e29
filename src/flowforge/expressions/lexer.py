"""Lexer/tokenizer for the FlowForge formula language.

Converts formula strings into a list of tokens for the parser.

Token types:
- Literals: NUMBER, STRING (numbers keep their source text)
- Identifiers: IDENTIFIER (field names, function names, true/false/null)
- Operators: arithmetic, comparison, logical, concatenation
- Punctuation: LPAREN, RPAREN, LBRACKET, RBRACKET, LBRACE, RBRACE,
  COMMA, DOT, COLON, QUESTION
"""

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator

from flowforge.expressions.errors import LexerError


class TokenType(Enum):
    """Types of tokens in the formula language."""

    # Literals
    NUMBER = auto()
    STRING = auto()

    # Identifiers (true, false and null included)
    IDENTIFIER = auto()

    # Arithmetic operators
    PLUS = auto()        # +
    MINUS = auto()       # -
    MULTIPLY = auto()    # *
    DIVIDE = auto()      # /
    MODULO = auto()      # %
    POWER = auto()       # **

    # Comparison operators
    EQ = auto()          # ==
    NEQ = auto()         # !=
    LT = auto()          # <
    GT = auto()          # >
    LTE = auto()         # <=
    GTE = auto()         # >=

    # Logical operators
    AND = auto()         # &&
    OR = auto()          # ||
    NOT = auto()         # !

    # String concatenation
    CONCAT = auto()      # &

    # Punctuation
    LPAREN = auto()      # (
    RPAREN = auto()      # )
    LBRACKET = auto()    # [
    RBRACKET = auto()    # ]
    LBRACE = auto()      # {
    RBRACE = auto()      # }
    COMMA = auto()       # ,
    DOT = auto()         # .
    COLON = auto()       # :
    QUESTION = auto()    # ?

    # End of input
    EOF = auto()


@dataclass(frozen=True)
class Token:
    """A single token from the lexer.

    Attributes:
        type: The token type
        value: The token's source text (string literals are unescaped)
        position: Character position in the source string
        line: Line number (1-indexed)
        column: Column number (1-indexed)
    """

    type: TokenType
    value: str
    position: int
    line: int = 1
    column: int = 1

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, pos={self.position})"


# Strict-equality spellings from other dialects; rejected with a pointer to ==
_STRICT_EQUALITY = re.compile(r"===|!==")

_UNTERMINATED_EXPONENT = re.compile(r"(?:\d+(?:\.\d+)?|\.\d+)[eE](?![+-]?\d)")

# Token patterns (order matters - longer matches first)
TOKEN_PATTERNS = [
    # Whitespace (skip)
    (r"\s+", None),

    # Numbers: 12, 4.5, .5, 1e10, 2.5E-3
    (r"(?:\d+(?:\.\d+)?|\.\d+)(?:[eE][+-]?\d+)?", TokenType.NUMBER),

    # Multi-character operators (before single character)
    (r"\*\*", TokenType.POWER),
    (r"==", TokenType.EQ),
    (r"!=", TokenType.NEQ),
    (r"<=", TokenType.LTE),
    (r">=", TokenType.GTE),
    (r"&&", TokenType.AND),
    (r"\|\|", TokenType.OR),

    # Single character operators
    (r"<", TokenType.LT),
    (r">", TokenType.GT),
    (r"!", TokenType.NOT),
    (r"&", TokenType.CONCAT),
    (r"\+", TokenType.PLUS),
    (r"-", TokenType.MINUS),
    (r"\*", TokenType.MULTIPLY),
    (r"/", TokenType.DIVIDE),
    (r"%", TokenType.MODULO),

    # Punctuation
    (r"\(", TokenType.LPAREN),
    (r"\)", TokenType.RPAREN),
    (r"\[", TokenType.LBRACKET),
    (r"\]", TokenType.RBRACKET),
    (r"\{", TokenType.LBRACE),
    (r"\}", TokenType.RBRACE),
    (r",", TokenType.COMMA),
    (r"\.", TokenType.DOT),
    (r":", TokenType.COLON),
    (r"\?", TokenType.QUESTION),

    # Strings (double or single quoted, no raw newlines)
    (r'"(?:[^"\\\n]|\\.)*"', TokenType.STRING),
    (r"'(?:[^'\\\n]|\\.)*'", TokenType.STRING),

    # Identifiers: Unicode letters, digits, underscore; optional leading $
    (r"\$?[^\W\d]\w*", TokenType.IDENTIFIER),
]

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "\\": "\\",
    '"': '"',
    "'": "'",
}

_COMPILED_PATTERNS = [
    (re.compile(pattern), token_type) for pattern, token_type in TOKEN_PATTERNS
]


class Lexer:
    """Tokenizer for the formula language.

    The first error aborts tokenization; there are no partial results.

    Usage:
        lexer = Lexer('price * quantity > 100 && status == "open"')
        for token in lexer:
            print(token)
    """

    def __init__(self, source: str):
        self.source = source
        self.position = 0
        self.line = 1
        self.column = 1

    def __iter__(self) -> Iterator[Token]:
        """Iterate over all tokens in the source."""
        while True:
            token = self.next_token()
            yield token
            if token.type == TokenType.EOF:
                break

    def next_token(self) -> Token:
        """Get the next token from the source."""
        while True:
            if self.position >= len(self.source):
                return Token(TokenType.EOF, "", self.position, self.line, self.column)

            self._check_invalid_forms()

            for pattern, token_type in _COMPILED_PATTERNS:
                match = pattern.match(self.source, self.position)
                if match:
                    break
            else:
                raise self._unexpected_character()

            value = match.group()
            start_pos = self.position
            start_line = self.line
            start_column = self.column
            self._advance(len(value))

            # Skip whitespace
            if token_type is None:
                continue

            if token_type == TokenType.STRING:
                value = self._unescape_string(value[1:-1])

            return Token(token_type, value, start_pos, start_line, start_column)

    def _check_invalid_forms(self) -> None:
        """Reject inputs that would otherwise lex into a misleading sequence."""
        strict = _STRICT_EQUALITY.match(self.source, self.position)
        if strict:
            operator = strict.group()
            raise LexerError(
                f"Operator '{operator}' is not supported; use '{operator[:2]}'",
                self.position,
                self.line,
                self.column,
            )

        exponent = _UNTERMINATED_EXPONENT.match(self.source, self.position)
        if exponent:
            raise LexerError(
                "Invalid number: expected digit after exponent",
                exponent.end(),
                self.line,
                self.column + len(exponent.group()),
            )

    def _unexpected_character(self) -> LexerError:
        char = self.source[self.position]
        if char in "\"'":
            return LexerError(
                "Unterminated string", self.position, self.line, self.column
            )
        return LexerError(
            f"Unexpected character '{char}'", self.position, self.line, self.column
        )

    def _advance(self, count: int) -> None:
        """Advance position by count characters, updating line/column."""
        for _ in range(count):
            if self.position < len(self.source):
                if self.source[self.position] == "\n":
                    self.line += 1
                    self.column = 1
                else:
                    self.column += 1
                self.position += 1

    def _unescape_string(self, s: str) -> str:
        """Process escape sequences in a string."""
        result = []
        i = 0
        while i < len(s):
            if s[i] == "\\" and i + 1 < len(s):
                next_char = s[i + 1]
                result.append(_ESCAPES.get(next_char, next_char))
                i += 2
            else:
                result.append(s[i])
                i += 1
        return "".join(result)

    def tokenize(self) -> list[Token]:
        """Tokenize the entire source and return list of tokens."""
        return list(self)


def tokenize(source: str) -> list[Token]:
    """Convenience function to tokenize a formula string."""
    return Lexer(source).tokenize()
