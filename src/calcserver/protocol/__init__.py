"""
=============================================================================
LINE PROTOCOL
=============================================================================

The text protocol spoken between clients and the calculation server.

    commands.py   Client → Server: JOIN / CALC / CLOSE parsing
    replies.py    Server → Client: Hello / Result / Error / Connection closed

One command or reply per line, newline-terminated UTF-8. There is no
binary framing and no request ids: replies on a connection come back in
the order the requests were sent.

=============================================================================
"""

from .commands import (
    Command,
    CommandType,
    parse_join,
    parse_command,
    JOIN_PREFIX,
    CALC_PREFIX,
    CLOSE_COMMAND,
)
from . import replies

__all__ = [
    "Command",
    "CommandType",
    "parse_join",
    "parse_command",
    "JOIN_PREFIX",
    "CALC_PREFIX",
    "CLOSE_COMMAND",
    "replies",
]
