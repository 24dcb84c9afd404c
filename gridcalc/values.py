"""Typed cell values and their coercion rules."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from gridcalc.formula import ErrorCode, ValueTypeError, format_result


class ValueKind(str, Enum):
    NUMBER = "number"
    BOOLEAN = "boolean"
    TEXT = "text"
    ERROR = "error"


@dataclass(frozen=True)
class Value:
    kind: ValueKind
    data: Union[float, bool, str, ErrorCode]

    # ── constructors ─────────────────────────────────────────────────

    @classmethod
    def number(cls, n: float) -> Value:
        n = float(n)
        if not math.isfinite(n):
            raise ValueTypeError(f"Result is not a finite number: {n}")
        return cls(ValueKind.NUMBER, n)

    @classmethod
    def boolean(cls, b: bool) -> Value:
        return cls(ValueKind.BOOLEAN, bool(b))

    @classmethod
    def text(cls, s: str) -> Value:
        return cls(ValueKind.TEXT, s)

    @classmethod
    def error(cls, code: ErrorCode) -> Value:
        return cls(ValueKind.ERROR, ErrorCode(code))

    @classmethod
    def from_literal(cls, raw: Optional[str]) -> Optional[Value]:
        """Interpret a literal cell's stored text. Blank text is None (absent)."""
        if raw is None:
            return None
        stripped = raw.strip()
        if not stripped:
            return None
        n = _to_float(stripped)
        if n is not None:
            return cls(ValueKind.NUMBER, n)
        if stripped.upper() in ("TRUE", "FALSE"):
            return cls.boolean(stripped.upper() == "TRUE")
        if len(stripped) >= 2 and stripped[0] == '"' and stripped[-1] == '"':
            return cls.text(stripped[1:-1])
        return cls.text(raw)

    # ── coercion ─────────────────────────────────────────────────────

    @property
    def is_error(self) -> bool:
        return self.kind == ValueKind.ERROR

    def as_number(self) -> float:
        if self.kind == ValueKind.NUMBER:
            return self.data
        if self.kind == ValueKind.BOOLEAN:
            return 1.0 if self.data else 0.0
        if self.kind == ValueKind.TEXT:
            n = _to_float(self.data.strip())
            if n is None:
                raise ValueTypeError(f"Expected a number, got text {self.data!r}")
            return n
        raise ValueTypeError(f"Expected a number, got {self.data.value}")

    def as_text(self) -> str:
        """Display form used for concatenation and cell output."""
        if self.kind == ValueKind.NUMBER:
            return format_result(self.data)
        if self.kind == ValueKind.BOOLEAN:
            return "TRUE" if self.data else "FALSE"
        if self.kind == ValueKind.TEXT:
            return self.data
        return self.data.value

    def equals(self, other: Value) -> bool:
        """Formula `=`: same kind and same data, text compared case-insensitively."""
        if self.kind != other.kind:
            return False
        if self.kind == ValueKind.TEXT:
            return self.data.casefold() == other.data.casefold()
        return self.data == other.data


ZERO = Value(ValueKind.NUMBER, 0.0)


def _to_float(text: str) -> Optional[float]:
    try:
        n = float(text)
    except ValueError:
        return None
    # float() also accepts "nan", "inf" and "infinity"
    if not math.isfinite(n):
        return None
    return n
