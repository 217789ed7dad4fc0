"""
=============================================================================
CALCULATION CLIENT
=============================================================================

A thin client for the line protocol, usable as a library or interactively:

    # Library
    with CalcClient("127.0.0.1", 6789) as client:
        client.join("alice")            # "Hello alice"
        client.calc("3+4*2")            # "Result: 11"
        client.close()                  # "Connection closed"

    # Interactive
    calcserver-client --host 127.0.0.1 --port 6789

The interactive mode mirrors the classic classroom client: ask for a name,
send three expressions (each must contain at least two operators), pause
a random 1-3 seconds between them, then keep going until the user types
CLOSE. Expressions are checked locally before they are sent.

=============================================================================
"""

import argparse
import logging
import random
import socket
import sys
import time
from typing import Callable, Optional, TextIO

from .errors import CalcServerError
from .protocol import CALC_PREFIX, CLOSE_COMMAND, JOIN_PREFIX


logger = logging.getLogger(__name__)

OPERATORS = "+-*/%"


class ClientError(CalcServerError):
    """Raised when the server rejects the handshake or goes away."""


def is_valid_expression(expression: str) -> bool:
    """
    Local pre-check before sending a CALC.

    Rules:
    - only digits, ".", and + - * / % (whitespace is ignored)
    - no operator where a number is expected, except a leading "-"
    - must not end with an operator
    - at least two operator characters (a leading "-" counts)
    """
    text = "".join(expression.split())
    if not text:
        return False

    operator_count = 0
    expect_number = True

    for position, char in enumerate(text):
        if char.isdigit() or char == ".":
            expect_number = False
        elif char in OPERATORS:
            if expect_number and not (char == "-" and position == 0):
                return False
            operator_count += 1
            expect_number = True
        else:
            return False

    if expect_number:
        return False

    return operator_count >= 2


class CalcClient:
    """
    Blocking client: one request, one reply line.

    Attributes:
        host: Server host.
        port: Server port.
        timeout: Socket timeout in seconds (None = wait forever).
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 6789, timeout: Optional[float] = 10.0):
        self.host = host
        self.port = port
        self.timeout = timeout

        self._socket: Optional[socket.socket] = None
        self._reader = None
        self.username: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self._socket is not None

    def connect(self) -> "CalcClient":
        """Open the TCP connection."""
        self._socket = socket.create_connection((self.host, self.port), timeout=self.timeout)
        self._reader = self._socket.makefile("r", encoding="utf-8", newline="\n")
        logger.debug(f"Connected to {self.host}:{self.port}")
        return self

    # =========================================================================
    # PROTOCOL
    # =========================================================================

    def send_line(self, line: str):
        """Send one raw protocol line."""
        if self._socket is None:
            raise ClientError("Not connected")
        self._socket.sendall((line + "\n").encode("utf-8"))

    def read_line(self) -> str:
        """
        Read one reply line.

        Raises:
            ClientError: The server closed the connection.
        """
        if self._reader is None:
            raise ClientError("Not connected")
        line = self._reader.readline()
        if not line:
            raise ClientError("Connection closed by server")
        return line.rstrip("\r\n")

    def request(self, line: str) -> str:
        """Send a line and wait for its reply."""
        self.send_line(line)
        return self.read_line()

    def join(self, username: str) -> str:
        """
        Perform the JOIN handshake.

        Returns:
            The greeting ("Hello <username>").

        Raises:
            ClientError: The server rejected the handshake.
        """
        reply = self.request(f"{JOIN_PREFIX}{username}")
        if not reply.startswith("Hello"):
            raise ClientError(reply)
        self.username = username
        return reply

    def calc(self, expression: str) -> str:
        """Evaluate an expression ("Result: ..." or "Error: ...")."""
        return self.request(f"{CALC_PREFIX}{expression}")

    def close(self) -> Optional[str]:
        """
        Send CLOSE, read the confirmation and release the socket.

        Returns:
            The confirmation line, or None if the server was already gone.
        """
        if self._socket is None:
            return None

        reply = None
        try:
            reply = self.request(CLOSE_COMMAND)
        except (OSError, ClientError) as e:
            logger.debug(f"Close without confirmation: {e}")
        finally:
            self.disconnect()
        return reply

    def disconnect(self):
        """Drop the connection without sending CLOSE."""
        if self._reader is not None:
            self._reader.close()
            self._reader = None
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

    def __enter__(self):
        if self._socket is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


# =============================================================================
# INTERACTIVE MODE
# =============================================================================

def prompt_expression(input_fn: Callable[[str], str], output: TextIO) -> str:
    """Prompt until the user enters an expression that passes the local check."""
    while True:
        expression = input_fn(
            "Enter math expression (must include at least 2 of + - * / %): "
        ).strip()
        if is_valid_expression(expression):
            return expression
        output.write("Invalid. Expression must contain at least two operators. Try again.\n")


def interactive(
    client: CalcClient,
    input_fn: Callable[[str], str] = input,
    output: TextIO = sys.stdout,
    initial_requests: int = 3,
    delay: Callable[[], float] = lambda: random.uniform(1.0, 3.0),
) -> int:
    """
    Run the interactive session on a connected client.

    Returns:
        Process exit code.
    """
    username = input_fn("Please type your name to connect: ").strip()
    try:
        output.write(f"Server: {client.join(username)}\n")
    except ClientError as e:
        output.write(f"Server: {e}\n")
        output.write("Connection failed. Exiting.\n")
        return 1

    for _ in range(initial_requests):
        expression = prompt_expression(input_fn, output)
        output.write(f"Server Response: {client.calc(expression)}\n")
        time.sleep(delay())

    while True:
        text = input_fn("Type 'CLOSE' to disconnect or enter another expression: ").strip()

        if text.upper() == CLOSE_COMMAND:
            client.close()
            output.write("Connection closed.\n")
            return 0

        if not is_valid_expression(text):
            output.write(
                "Expression must contain at least two arithmetic operators "
                "(+ - * / %). Try again.\n"
            )
            continue

        output.write(f"Server Response: {client.calc(text)}\n")


def main(argv: Optional[list] = None) -> int:
    """CLI entry point for the interactive client."""
    parser = argparse.ArgumentParser(description="Interactive calculation client")
    parser.add_argument("--host", "-H", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, default=6789, help="Server port (default: 6789)")
    parser.add_argument(
        "--no-delay",
        action="store_true",
        help="Skip the random pause between the first requests",
    )
    args = parser.parse_args(argv)

    client = CalcClient(args.host, args.port, timeout=None)
    try:
        client.connect()
        delay = (lambda: 0.0) if args.no_delay else (lambda: random.uniform(1.0, 3.0))
        return interactive(client, delay=delay)
    except (OSError, ClientError) as e:
        print(f"Client Error: {e}", file=sys.stderr)
        return 1
    except (KeyboardInterrupt, EOFError):
        print()
        return 130
    finally:
        client.disconnect()


if __name__ == "__main__":
    sys.exit(main())
