"""
Exception hierarchy for the calculation server.

Every error the server raises on purpose derives from CalcServerError, so
callers can tell "we rejected this" apart from genuine bugs:

    CalcServerError
    ├── ProtocolError            Malformed or out-of-sequence line
    │   └── LineTooLongError     Line exceeded max_line_length
    ├── EvaluationError          Expression could not be computed
    │   ├── DivisionByZeroError
    │   ├── ModuloByZeroError
    │   └── InvalidExpressionError
    └── QueueClosedError         Computation queue is shutting down

Each exception's message is exactly the text that follows "Error: " in the
reply sent to the client.
"""


class CalcServerError(Exception):
    """Base class for all calculation server errors."""


class ProtocolError(CalcServerError):
    """Raised when a client line does not follow the wire protocol."""


class LineTooLongError(ProtocolError):
    """Raised when a client sends a line longer than the configured limit."""

    def __init__(self, limit: int):
        super().__init__("Line too long")
        self.limit = limit


class EvaluationError(CalcServerError):
    """
    Raised when an expression cannot be evaluated.

    The message is user-facing: the worker sends it back verbatim as
    "Error: <message>".
    """


class DivisionByZeroError(EvaluationError):
    def __init__(self):
        super().__init__("Division by zero")


class ModuloByZeroError(EvaluationError):
    def __init__(self):
        super().__init__("Modulo by zero")


class InvalidExpressionError(EvaluationError):
    def __init__(self, detail: str = ""):
        super().__init__("Invalid expression")
        # Kept for debug logging only, never sent to the client
        self.detail = detail


class QueueClosedError(CalcServerError):
    """Raised when submitting to a computation queue that is shutting down."""

    def __init__(self):
        super().__init__("Server shutting down")
