"""
=============================================================================
CLIENT COMMAND PARSING
=============================================================================

Converts one decoded protocol line into a structured Command.

=============================================================================
WIRE FORMAT
=============================================================================

Every command is one line of UTF-8 text terminated by "\\n" (a trailing
"\\r" is tolerated and stripped by the connection layer):

    ┌───────────┬──────────────────────┬─────────────────────────────────┐
    │ Command   │ Format               │ When                            │
    ├───────────┼──────────────────────┼─────────────────────────────────┤
    │ JOIN      │ JOIN:<username>      │ First line on the connection    │
    │ CALC      │ CALC:<expression>    │ After a successful JOIN         │
    │ CLOSE     │ CLOSE                │ After a successful JOIN         │
    └───────────┴──────────────────────┴─────────────────────────────────┘

Prefixes are case-sensitive. CLOSE must match exactly.

Parsing never raises for an unknown line - it yields CommandType.UNKNOWN
and the session decides what to reply. Only the handshake has a strict
parser (parse_join) because a bad first line ends the connection.

=============================================================================
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..errors import ProtocolError


JOIN_PREFIX = "JOIN:"
CALC_PREFIX = "CALC:"
CLOSE_COMMAND = "CLOSE"

# JOIN:<username>, username is everything after the colon
JOIN_PATTERN = re.compile(r"^JOIN:(.*)$")


class CommandType(Enum):
    """Kinds of line a client can send."""
    JOIN = "join"
    CALC = "calc"
    CLOSE = "close"
    EMPTY = "empty"      # Blank line, ignored while active
    UNKNOWN = "unknown"  # Anything else


@dataclass(frozen=True)
class Command:
    """
    A parsed client line.

    Attributes:
        type: What kind of command this is.
        argument: Username for JOIN, expression for CALC, else None.
        raw: The line exactly as received (without its newline).
    """
    type: CommandType
    argument: Optional[str] = None
    raw: str = ""


def parse_join(line: Optional[str]) -> str:
    """
    Parse the handshake line and return the username.

    Surrounding whitespace is stripped from the username.

    Args:
        line: The first line received, or None on end-of-stream.

    Returns:
        The username.

    Raises:
        ProtocolError: The line is missing, is not a JOIN command or
            carries an empty username.
    """
    if line is None:
        raise ProtocolError("Connection closed before JOIN")

    match = JOIN_PATTERN.match(line)
    if not match:
        raise ProtocolError(f"Expected JOIN, got {line[:40]!r}")

    username = match.group(1).strip()
    if not username:
        raise ProtocolError("Empty username")

    return username


def parse_command(line: str) -> Command:
    """
    Parse a line received after the handshake.

    Args:
        line: One decoded line without its terminator.

    Returns:
        The parsed Command. Unrecognized lines come back as UNKNOWN.
    """
    if line.startswith(CALC_PREFIX):
        return Command(CommandType.CALC, line[len(CALC_PREFIX):], raw=line)

    if line == CLOSE_COMMAND:
        return Command(CommandType.CLOSE, raw=line)

    if line.startswith(JOIN_PREFIX):
        # A second JOIN is out of sequence, treat as any other bad command
        return Command(CommandType.UNKNOWN, raw=line)

    if not line.strip():
        return Command(CommandType.EMPTY, raw=line)

    return Command(CommandType.UNKNOWN, raw=line)
