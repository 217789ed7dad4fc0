"""
=============================================================================
ARITHMETIC EVALUATOR
=============================================================================

Turns an expression such as "10-2*3+1" into a number, honouring the usual
precedence of * / % over + -.

The grammar is deliberately flat: numbers separated by the five binary
operators, no parentheses, no functions, an optional leading minus sign.

=============================================================================
TWO-PASS EVALUATION
=============================================================================

Instead of building a syntax tree we keep two parallel lists and collapse
them in two sweeps:

    "10-2*3+1"
         │
         ▼  tokenize
    operands:  [10, 2, 3, 1]
    operators: [ -, *, + ]
         │
         ▼  pass 1: collapse * / %  (left to right, in place)
    operands:  [10, 6, 1]
    operators: [ -, + ]
         │
         ▼  pass 2: fold + -  (left to right)
    result:    5

Division or modulo by zero aborts immediately with a typed error, so a
later operand never gets the chance to "fix" the expression.

=============================================================================
NUMERIC SEMANTICS
=============================================================================

- All arithmetic is IEEE-754 double precision (Python float).
- % is math.fmod: the sign follows the dividend (-7 % 3 == -1), which
  differs from Python's own % operator (-7 % 3 == 2).
- There is no overflow detection: 1e308*10 is inf.
- Integral results are printed without a decimal point ("2", not "2.0").

=============================================================================
"""

import math
import logging
from typing import List, Tuple

from .errors import (
    DivisionByZeroError,
    ModuloByZeroError,
    InvalidExpressionError,
)


logger = logging.getLogger(__name__)


OPERATORS = "+-*/%"
HIGH_PRECEDENCE = "*/%"
NUMBER_CHARS = "0123456789."


def tokenize(expression: str) -> Tuple[List[float], List[str]]:
    """
    Split an expression into operands and operators.

    Whitespace anywhere in the expression is ignored. A "-" in the very
    first position is read as the sign of the first number.

    Args:
        expression: Raw expression text.

    Returns:
        (operands, operators) with len(operands) == len(operators) + 1.

    Raises:
        InvalidExpressionError: Unknown character, empty operand (two
            operators in a row, leading or trailing operator) or an
            operand float() cannot read (e.g. "1.2.3").
    """
    text = "".join(expression.split())
    if not text:
        raise InvalidExpressionError("empty expression")

    operands: List[float] = []
    operators: List[str] = []
    buffer = ""

    for position, char in enumerate(text):
        if char in NUMBER_CHARS:
            buffer += char
        elif char in OPERATORS:
            if char == "-" and position == 0:
                buffer = "-"
                continue
            operands.append(_parse_operand(buffer, position))
            operators.append(char)
            buffer = ""
        else:
            raise InvalidExpressionError(f"unexpected character {char!r} at {position}")

    operands.append(_parse_operand(buffer, len(text)))
    return operands, operators


def _parse_operand(buffer: str, position: int) -> float:
    """Convert one accumulated operand buffer to a float."""
    if buffer in ("", "-"):
        raise InvalidExpressionError(f"missing operand at {position}")
    try:
        return float(buffer)
    except ValueError:
        raise InvalidExpressionError(f"bad number {buffer!r}") from None


def _apply(left: float, operator: str, right: float) -> float:
    """Apply one binary operator."""
    if operator == "+":
        return left + right
    if operator == "-":
        return left - right
    if operator == "*":
        return left * right
    if operator == "/":
        if right == 0:
            raise DivisionByZeroError()
        return left / right
    if operator == "%":
        if right == 0:
            raise ModuloByZeroError()
        try:
            return math.fmod(left, right)
        except ValueError:
            # fmod(inf, x) is a domain error
            raise InvalidExpressionError("non-finite modulo operand") from None
    raise InvalidExpressionError(f"unknown operator {operator!r}")


def calculate(expression: str) -> float:
    """
    Evaluate an expression and return the raw float result.

    Args:
        expression: Raw expression text, e.g. "3+4*2".

    Returns:
        The numeric result.

    Raises:
        DivisionByZeroError: A "/" has a zero right operand.
        ModuloByZeroError: A "%" has a zero right operand.
        InvalidExpressionError: The text is not a flat infix expression.
    """
    operands, operators = tokenize(expression)

    # ─────────────────────────────────────────────────────────────────────
    # PASS 1: * / %
    # ─────────────────────────────────────────────────────────────────────
    # Collapse operands[i] (op) operands[i + 1] into operands[i] and drop
    # the consumed operator and right operand. i only advances past +/-.

    i = 0
    while i < len(operators):
        if operators[i] in HIGH_PRECEDENCE:
            operands[i] = _apply(operands[i], operators[i], operands[i + 1])
            del operands[i + 1]
            del operators[i]
        else:
            i += 1

    # ─────────────────────────────────────────────────────────────────────
    # PASS 2: + -
    # ─────────────────────────────────────────────────────────────────────

    result = operands[0]
    for operator, operand in zip(operators, operands[1:]):
        result = _apply(result, operator, operand)

    return result


def format_number(value: float) -> str:
    """
    Render a result for the wire.

    Whole numbers lose their fractional part ("2"), everything else uses
    the shortest decimal that round-trips ("0.25"). inf and nan render
    as Python spells them.
    """
    if math.isfinite(value) and value.is_integer():
        return str(int(value))
    return repr(value)


def evaluate(expression: str) -> str:
    """
    Evaluate an expression and return the formatted result.

    This is the function the computation worker calls. It keeps no state
    between calls, so the same text always yields the same answer.

    Raises:
        EvaluationError: See calculate().
    """
    value = calculate(expression)
    logger.debug(f"Evaluated {expression!r} -> {value!r}")
    return format_number(value)
