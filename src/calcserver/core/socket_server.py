"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER (LISTENER)
=============================================================================

This module owns the listening socket: bind, listen, accept, and hand each
accepted client to a callback. It knows nothing about JOIN or CALC.

=============================================================================
SOCKET LIFECYCLE (Server Side)
=============================================================================

    1. socket()    Create a TCP socket
    2. bind()      Reserve IP:PORT for this server
    3. listen()    Let the OS queue incoming connections (backlog)
    4. accept()    Take one queued connection → NEW socket for that client
    5. close()     Release the listening socket on shutdown

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── Created once at startup
                    │   0.0.0.0:6789        │     Never sends/receives data
                    └───────────┬───────────┘
                                │ accept()
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    ┌───────────┐         ┌───────────┐         ┌───────────┐
    │ Session 1 │         │ Session 2 │         │ Session 3 │
    └───────────┘         └───────────┘         └───────────┘

=============================================================================
SIGNAL HANDLING FOR GRACEFUL SHUTDOWN
=============================================================================

SIGINT (Ctrl+C) and SIGTERM (kill, docker stop) are caught and turned into
a shutdown() call, so the accept loop ends and the server can drain the
computation queue and close sessions instead of dying mid-reply.

Python only allows installing signal handlers from the main thread, so
when the listener runs on another thread (tests, embedding) the handlers
are simply not installed.

=============================================================================
"""

import socket
import signal
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


class SocketServer:
    """
    Low-level TCP listener.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    start(handler)                                                    │
    │        ├──► _create_socket()   socket() + setsockopt()              │
    │        ├──► bind() / listen()                                        │
    │        ├──► _setup_signals()   SIGTERM/SIGINT → shutdown()          │
    │        └──► _accept_loop()     BLOCKS here                           │
    │                 └──► while running:                                  │
    │                         accept()                                     │
    │                         Connection(...)                              │
    │                         handler(conn)                                │
    │                                                                      │
    │    shutdown()        _running = False (loop exits within ~1s)       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        def handle_connection(conn: Connection):
            ...

        server = SocketServer(config)
        server.start(handle_connection)  # Blocks until shutdown
    """

    def __init__(self, config: ServerConfig, poll_interval: float = 1.0):
        """
        Args:
            config: Host, port, backlog and per-connection settings.
            poll_interval: accept() timeout, i.e. how quickly the loop
                           notices shutdown().
        """
        self.config = config
        self.poll_interval = poll_interval

        self._socket: Optional[socket.socket] = None
        self._running = False

        # Set once the socket is listening, so callers can wait for it
        self._ready_event = threading.Event()

        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        """Check if server is running."""
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """
        The bound (host, port).

        With port=0 in the config this is the port the OS actually picked.
        """
        if self._socket is not None:
            try:
                return self._socket.getsockname()[:2]
            except OSError:
                pass
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        """Create and configure the listening socket."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Avoid "Address already in use" while the old socket is in TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Replies are single short lines, send them immediately
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # accept() wakes up periodically to check self._running
        sock.settimeout(self.poll_interval)

        return sock

    def _setup_signals(self):
        """Install SIGTERM/SIGINT handlers (main thread only)."""
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, skipping signal handlers")
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        """Restore original signal handlers."""
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen and accept connections until shutdown() is called.

        This method BLOCKS.

        Args:
            connection_handler: Called with each accepted Connection. It
                                must return quickly (spawn a thread).
        """
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._socket.close()
            self._socket = None
            raise

        self._socket.listen(self.config.backlog)

        self._running = True
        self._setup_signals()

        host, port = self.address
        logger.info(f"Server listening on {host}:{port}")
        self._ready_event.set()

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        """Accept connections and hand them off until shutdown."""
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                # Normal: lets us re-check self._running
                continue
            except OSError as e:
                # Socket error - usually means we're shutting down
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            try:
                conn = Connection(
                    socket=client_socket,
                    address=client_address,
                    buffer_size=self.config.buffer_size,
                    timeout=self.config.idle_timeout,
                    max_line_length=self.config.max_line_length,
                )
                connection_handler(conn)
            except Exception as e:
                # One bad connection must not stop the listener
                logger.exception(f"Failed to hand off connection from {client_address[0]}: {e}")
                client_socket.close()

    def shutdown(self):
        """
        Stop accepting connections.

        Safe to call from a signal handler or any thread, and more than once.
        """
        if self._running:
            logger.info("Shutting down listener...")
        self._running = False

    def _cleanup(self):
        """Restore signals and close the listening socket."""
        self._restore_signals()

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass  # Already closed
            self._socket = None

        self._ready_event.clear()
        logger.info("Listener stopped")

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait until the socket is listening. Returns False on timeout."""
        return self._ready_event.wait(timeout)
