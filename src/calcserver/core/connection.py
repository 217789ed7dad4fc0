"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module wraps an accepted client socket with a line-oriented API: read
one protocol line, send one reply line, close cleanly.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

TCP does NOT preserve message boundaries. A client that sends

    send("CALC:1+2\\n")
    send("CALC:3*4\\n")

may be read by the server as any of:

    recv() → "CALC:1+2\\nCALC:3*4\\n"     (both combined)
    recv() → "CALC:1"                    (partial)
    recv() → "+2\\nCALC:3*4\\n"            (rest of first + second)

So we keep a buffer and only hand out COMPLETE lines:

    ┌─────────────────────────────────────────────────────────────────┐
    │                       read_line()                                │
    ├─────────────────────────────────────────────────────────────────┤
    │                                                                  │
    │   while "\\n" not in buffer:                                     │
    │       chunk = recv()                                             │
    │       if chunk is empty:   peer closed its write side            │
    │           return leftover text, or None if nothing is left      │
    │       buffer += chunk                                            │
    │                                                                  │
    │   line, buffer = buffer.split("\\n", 1)                          │
    │   return line (minus a trailing "\\r")                           │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

Leftover bytes stay in the buffer for the next call, so a client may
pipeline several commands in one packet.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──────► CLOSING ──────► CLOSED

    NEW covers the whole working life of the connection: reads happen on
    the session thread and writes on its reply writer at the same time.
    Once CLOSING is reached send_line() refuses to write.

=============================================================================
"""

import socket
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import uuid

from ..errors import LineTooLongError


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states."""
    NEW = "new"            # Accepted, open for reading and writing
    CLOSING = "closing"    # Shutdown sequence in progress
    CLOSED = "closed"      # Socket released


@dataclass
class Connection:
    """
    Represents a client connection.

    Reads and writes may happen on different threads (the session reads,
    its reply writer sends), but each direction must only ever be used by
    one thread at a time.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Unique connection identifier (for logging).
        state: Current connection state.
        lines_read: Number of complete lines received.
    """

    # Required parameters
    socket: socket.socket
    address: tuple[str, int]

    # Generated/default parameters
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    lines_read: int = 0

    # Configuration (passed from ServerConfig)
    buffer_size: int = 4096
    timeout: Optional[float] = None    # None = block until the peer closes
    max_line_length: int = 8192        # 0 = no limit
    encoding: str = "utf-8"

    # Internal state (not shown in repr for cleaner logs)
    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        """Put the socket in blocking mode with the configured timeout."""
        self.socket.setblocking(True)
        self.socket.settimeout(self.timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        """Get the client IP address."""
        return self.address[0]

    @property
    def client_port(self) -> int:
        """Get the client port."""
        return self.address[1]

    @property
    def is_closed(self) -> bool:
        return self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED)

    # =========================================================================
    # READING
    # =========================================================================

    def read_line(self) -> Optional[str]:
        """
        Read one newline-terminated line.

        Returns:
            The decoded line without "\\n" / "\\r\\n", or None once the peer
            has closed its side and nothing is left in the buffer. A final
            unterminated line is returned as-is before None.

        Raises:
            TimeoutError: No data within the configured timeout.
            LineTooLongError: The line exceeds max_line_length.
        """
        while b"\n" not in self._buffer:
            if self.max_line_length and len(self._buffer) > self.max_line_length:
                raise LineTooLongError(self.max_line_length)

            chunk = self._recv()
            if not chunk:
                if not self._buffer:
                    return None  # Connection closed by client
                line, self._buffer = self._buffer, b""
                return self._decode(line)

            self._buffer += chunk

        line, _, self._buffer = self._buffer.partition(b"\n")

        if self.max_line_length and len(line) > self.max_line_length:
            raise LineTooLongError(self.max_line_length)

        return self._decode(line)

    def _decode(self, line: bytes) -> str:
        """Decode one raw line and strip a trailing carriage return."""
        self.lines_read += 1
        if line.endswith(b"\r"):
            line = line[:-1]
        return line.decode(self.encoding, errors="replace")

    def _recv(self) -> bytes:
        """
        Receive data from socket with error handling.

        Returns:
            Received bytes, or empty bytes if connection closed.
        """
        try:
            return self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError, ConnectionAbortedError):
            # Client disconnected abruptly
            return b""

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_line(self, text: str) -> bool:
        """
        Send one reply line (a newline is appended).

        Uses sendall() so the whole line goes out or an error is raised.

        Returns:
            True if send succeeded, False if connection lost.
        """
        if self.is_closed:
            return False

        try:
            self.socket.sendall((text + "\n").encode(self.encoding))
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def abort(self):
        """
        Unblock a thread stuck in read_line() from another thread.

        shutdown(SHUT_RD) makes a pending recv() return b"", so the
        owning session sees end-of-stream and runs its normal cleanup.
        The write side stays open: replies already computed are still
        flushed before close() sends FIN and releases the socket.
        """
        try:
            self.socket.shutdown(socket.SHUT_RD)
        except OSError:
            pass  # Already disconnected

    def close(self):
        """
        Close the connection gracefully.

        1. shutdown(SHUT_WR): send FIN so the client sees end-of-stream
        2. Drain whatever the client still had in flight
        3. close(): release the file descriptor
        """
        if self.state == ConnectionState.CLOSED:
            return  # Already closed

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Already disconnected, that's fine

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass  # Discard any remaining data
        except OSError:
            pass  # That's fine, we're closing anyway

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.lines_read} lines")

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        """
        Allows using Connection with 'with' statement for automatic cleanup:

            with conn:
                line = conn.read_line()
                conn.send_line("Hello alice")
            # Connection automatically closed here
        """
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensure connection is closed."""
        self.close()
        return False  # Don't suppress exceptions
