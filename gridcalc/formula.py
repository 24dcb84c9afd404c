"""Formula parser for grid cells.

Grammar (precedence low -> high):

    Program  := "=" Expr
    Expr     := Compare
    Compare  := Concat (( "=" | "<>" | ">" | "<" | ">=" | "<=" ) Concat)*
    Concat   := Additive ( "&" Additive )*
    Additive := Term (("+" | "-") Term)*
    Term     := Unary (("*" | "/") Unary)*
    Unary    := Power ("%")?
    Power    := Primary ("^" Primary)*
    Primary  := Number | Bool | Text | Cell | Name | "(" Expr ")"

Error codes written to cells:
  #ERROR!   formula text does not match the grammar
  #REF!     cyclic, out-of-bounds or unknown cell reference
  #DIV/0!   division by zero
  #VALUE!   operand of the wrong type
  #NAME!    bare identifier that is neither a cell nor a boolean
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, NamedTuple, Optional


# ── Error types ───────────────────────────────────────────────────

class ErrorCode(str, Enum):
    REF = "#REF!"
    DIV0 = "#DIV/0!"
    VALUE = "#VALUE!"
    NAME = "#NAME!"
    ERROR = "#ERROR!"


class FormulaError(Exception):
    """Base for all formula errors. `code` is the cell display string."""
    code: ErrorCode = ErrorCode.ERROR

    def __init__(self, message: str = "", code: ErrorCode | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code

class FormulaSyntaxError(FormulaError):
    code = ErrorCode.ERROR

class DivisionByZeroError(FormulaError):
    code = ErrorCode.DIV0

class InvalidRefError(FormulaError):
    code = ErrorCode.REF

class CycleError(InvalidRefError):
    code = ErrorCode.REF

class ValueTypeError(FormulaError):
    code = ErrorCode.VALUE

class UnsupportedNameError(FormulaError):
    code = ErrorCode.NAME


# ── Helpers ───────────────────────────────────────────────────────

_CELL_KEY_RE = re.compile(r'^([A-Za-z]+)([0-9]+)$')


def is_cell_key(text: str) -> bool:
    return _CELL_KEY_RE.match(text) is not None


def parse_cell_key(key: str) -> tuple[str, int]:
    """'AB12' -> ('AB', 12). Raises InvalidRefError on bad input."""
    m = _CELL_KEY_RE.match(key.strip())
    if not m:
        raise InvalidRefError(f"Bad cell reference: {key}")
    return m.group(1).upper(), int(m.group(2))


def format_result(value: float) -> str:
    """Format a numeric result for cell display."""
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return f"{value:.15g}"


# ── AST ───────────────────────────────────────────────────────────

class NodeKind(str, Enum):
    PROGRAM = "Program"
    EQOP = "Eqop"
    NUMBER = "Number"
    BOOL_TOKEN = "BoolToken"
    TEXT_TOKEN = "TextToken"
    NAME_TOKEN = "NameToken"
    CELL_TOKEN = "CellToken"
    PLUSOP = "Plusop"
    MINOP = "Minop"
    MULOP = "Mulop"
    DIVOP = "Divop"
    EXPOP = "Expop"
    CONCATOP = "Concatop"
    PERCENTOP = "Percentop"
    GTOP = "Gtop"
    LTOP = "Ltop"
    GTEOP = "Gteop"
    LTEOP = "Lteop"
    NEQOP = "Neqop"
    OPEN_PAREN = "OpenParen"
    CLOSE_PAREN = "CloseParen"
    GROUP = "Group"


@dataclass(frozen=True)
class Node:
    """One grammar production.

    Leaf tokens keep their source text; operator nodes keep their operands
    as children; `Group` keeps `(OpenParen, expr, CloseParen)`.
    """
    kind: NodeKind
    start: int
    end: int
    children: tuple[Node, ...] = ()
    text: str = ""


class Token(NamedTuple):
    kind: str  # number, text, ident, op
    text: str
    start: int
    end: int


_TOKEN_RE = re.compile(r'''
    (?P<ws>\s+)
  | (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
  | (?P<text>"(?:[^"]|"")*")
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op><>|>=|<=|[=<>&+\-*/^%()])
''', re.VERBOSE)

_OPERATORS = {
    '=': NodeKind.EQOP,
    '<>': NodeKind.NEQOP,
    '>': NodeKind.GTOP,
    '<': NodeKind.LTOP,
    '>=': NodeKind.GTEOP,
    '<=': NodeKind.LTEOP,
    '&': NodeKind.CONCATOP,
    '+': NodeKind.PLUSOP,
    '-': NodeKind.MINOP,
    '*': NodeKind.MULOP,
    '/': NodeKind.DIVOP,
    '^': NodeKind.EXPOP,
    '%': NodeKind.PERCENTOP,
    '(': NodeKind.OPEN_PAREN,
    ')': NodeKind.CLOSE_PAREN,
}

_COMPARE_OPS = ('=', '<>', '>', '<', '>=', '<=')

# lowest precedence first
_BINARY_LEVELS = (_COMPARE_OPS, ('&',), ('+', '-'), ('*', '/'))


def tokenize(formula: str) -> list[Token]:
    """Split formula text into tokens, dropping whitespace."""
    tokens: list[Token] = []
    pos = 0
    while pos < len(formula):
        m = _TOKEN_RE.match(formula, pos)
        if not m:
            raise FormulaSyntaxError(f"Unexpected '{formula[pos]}' at pos {pos}")
        kind = m.lastgroup
        if kind != 'ws':
            tokens.append(Token(kind, m.group(0), m.start(), m.end()))
        pos = m.end()
    return tokens


# ── Parser (recursive descent) ────────────────────────────────────

class FormulaParser:
    """Parses formula text into a `Program` node."""
    MAX_DEPTH = 50

    __slots__ = ('formula', 'tokens', 'pos', 'depth', 'max_depth')

    def __init__(self, formula: str, max_depth: Optional[int] = None):
        self.formula = formula
        self.tokens: list[Token] = []
        self.pos = 0
        self.depth = 0
        self.max_depth = max_depth if max_depth is not None else self.MAX_DEPTH

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _peek_op(self, *ops: str) -> bool:
        tok = self._peek()
        return tok is not None and tok.kind == 'op' and tok.text in ops

    def _eat(self) -> Token:
        tok = self._peek()
        if tok is None:
            raise FormulaSyntaxError("Unexpected end of formula")
        self.pos += 1
        return tok

    def _binary(self, left: Node, ops: tuple[str, ...], operand) -> Node:
        while self._peek_op(*ops):
            tok = self._eat()
            right = operand()
            left = Node(_OPERATORS[tok.text], left.start, right.end, (left, right), tok.text)
        return left

    def _expr(self, level: int = 0) -> Node:
        """Compare, Concat, Additive and Term, selected by *level*."""
        if level == len(_BINARY_LEVELS):
            return self._unary()
        left = self._expr(level + 1)
        return self._binary(left, _BINARY_LEVELS[level], lambda: self._expr(level + 1))

    def _unary(self) -> Node:
        node = self._power()
        if self._peek_op('%'):
            tok = self._eat()
            node = Node(NodeKind.PERCENTOP, node.start, tok.end, (node,), tok.text)
        return node

    def _power(self) -> Node:
        return self._binary(self._primary(), ('^',), self._primary)

    def _group(self) -> Node:
        open_tok = self._eat()
        self.depth += 1
        if self.depth > self.max_depth:
            raise FormulaSyntaxError(f"Formula nested deeper than {self.max_depth} levels")
        inner = self._expr()
        if not self._peek_op(')'):
            raise FormulaSyntaxError(f"Expected ')' at pos {self._position()}")
        close_tok = self._eat()
        self.depth -= 1
        return Node(
            NodeKind.GROUP, open_tok.start, close_tok.end,
            (
                Node(NodeKind.OPEN_PAREN, open_tok.start, open_tok.end, text='('),
                inner,
                Node(NodeKind.CLOSE_PAREN, close_tok.start, close_tok.end, text=')'),
            ),
        )

    def _primary(self) -> Node:
        if self._peek_op('('):
            return self._group()
        tok = self._eat()
        if tok.kind == 'number':
            return Node(NodeKind.NUMBER, tok.start, tok.end, text=tok.text)
        if tok.kind == 'text':
            return Node(NodeKind.TEXT_TOKEN, tok.start, tok.end, text=tok.text)
        if tok.kind == 'ident':
            if tok.text.upper() in ('TRUE', 'FALSE'):
                kind = NodeKind.BOOL_TOKEN
            elif is_cell_key(tok.text):
                kind = NodeKind.CELL_TOKEN
            else:
                kind = NodeKind.NAME_TOKEN
            return Node(kind, tok.start, tok.end, text=tok.text)
        raise FormulaSyntaxError(f"Unexpected '{tok.text}' at pos {tok.start}")

    def _position(self) -> int:
        tok = self._peek()
        return tok.start if tok is not None else len(self.formula)

    def parse(self) -> Node:
        if not self.formula.startswith('='):
            raise FormulaSyntaxError("Formula must start with '='")
        self.tokens = tokenize(self.formula)
        self.pos = 1  # leading '=' is the program marker, never an operator
        self.depth = 0
        try:
            expr = self._expr()
        except RecursionError as e:
            raise FormulaSyntaxError("Formula nested too deeply to parse") from e
        if self.pos != len(self.tokens):
            tok = self.tokens[self.pos]
            raise FormulaSyntaxError(f"Unexpected '{tok.text}' at pos {tok.start}")
        eqop = Node(NodeKind.EQOP, 0, 1, text='=')
        return Node(NodeKind.PROGRAM, 0, len(self.formula), (eqop, expr))


def parse_formula(formula: str, max_depth: Optional[int] = None) -> Node:
    """Parse formula text (starting with '=') into a `Program` node."""
    return FormulaParser(formula, max_depth).parse()


def _preorder(node: Node) -> Iterator[tuple[Node, int]]:
    # operator chains like 1+1+...+1 build left-deep trees of any depth
    stack = [(node, 0)]
    while stack:
        current, depth = stack.pop()
        yield current, depth
        for child in reversed(current.children):
            stack.append((child, depth + 1))


def cell_tokens(node: Node) -> Iterator[Node]:
    """Yield every `CellToken` under *node*, left to right."""
    for current, _ in _preorder(node):
        if current.kind == NodeKind.CELL_TOKEN:
            yield current


def dump_tree(node: Node, formula: str) -> str:
    """Render a syntax tree as indented `Kind [from-to]: "text"` lines."""
    return "\n".join(
        f'{"  " * depth}{n.kind.value} [{n.start}-{n.end}]: "{formula[n.start:n.end]}"'
        for n, depth in _preorder(node)
    )
