"""
Server reply formatting.

Every reply is exactly one line. Functions here return the text WITHOUT the
trailing newline; Connection.send_line() adds it.

    Hello <username>                                   handshake accepted
    Error: Invalid join format. Use JOIN:username      handshake rejected
    Result: <value>                                    calculation succeeded
    Error: <reason>                                    anything that failed
    Connection closed                                  CLOSE acknowledged
"""

from ..errors import CalcServerError


INVALID_JOIN = "Error: Invalid join format. Use JOIN:username"
INVALID_COMMAND = "Error: Invalid command"
CONNECTION_CLOSED = "Connection closed"
SERVER_BUSY = "Error: Server busy"
SERVER_FULL = "Error: Server full"
SERVER_SHUTTING_DOWN = "Error: Server shutting down"
TOO_MANY_PENDING = "Error: Too many pending requests"
LINE_TOO_LONG = "Error: Line too long"


def greeting(username: str) -> str:
    """Reply to a successful JOIN."""
    return f"Hello {username}"


def result(value: str) -> str:
    """Reply carrying a formatted calculation result."""
    return f"Result: {value}"


def error(reason: str) -> str:
    """Generic error reply."""
    return f"Error: {reason}"


def error_from(exc: CalcServerError) -> str:
    """Error reply for one of our own exceptions (message is user-facing)."""
    return error(str(exc))
