"""
=============================================================================
CALCULATION SERVER
=============================================================================

The top-level object that wires everything together:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                           CalcServer                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   ServerConfig ──► SocketServer ── accept ──► Session thread (×N)   │
    │                                                   │                  │
    │                          SessionRegistry ◄────────┤                  │
    │                                                   │ submit()         │
    │                                                   ▼                  │
    │                                         ComputationQueue             │
    │                                         └── EvaluationWorker (×1)   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
THREADS
=============================================================================

    caller thread       SocketServer accept loop (run() blocks here)
    Session-<id>        one per connection: reads and dispatches lines
    Writer-<id>         one per connection: writes reply lines
    EvaluationWorker    exactly one: evaluates expressions in FIFO order

=============================================================================
GRACEFUL SHUTDOWN
=============================================================================

Triggered by SIGINT/SIGTERM, the admin console, or shutdown():

    1. Listener stops accepting
    2. Computation queue drains (or discards) pending calculations,
       so every accepted CALC still gets exactly one reply
    3. Remaining sessions are aborted: the read side of each socket is
       shut down, so the blocked read returns EOF and the session closes
       like any disconnect, still writing the replies it owes
    4. Session threads are joined (bounded by shutdown_timeout)

=============================================================================
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

from .config import ServerConfig
from .core import SocketServer, Connection, ComputationQueue
from .registry import Client, SessionRegistry
from .session import Session


logger = logging.getLogger(__name__)


class CalcServer:
    """
    Multi-client arithmetic server.

    =========================================================================
    USAGE
    =========================================================================

        server = CalcServer(ServerConfig(port=6789))
        server.run()            # Blocks until Ctrl+C / shutdown()

        # From another thread (tests, admin console):
        server.wait_until_ready()
        print(server.list_clients())
        server.shutdown()

    =========================================================================
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        """
        Args:
            config: Server configuration. Uses defaults if not provided.
        """
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        # ─────────────────────────────────────────────────────────────────
        # CORE COMPONENTS
        # ─────────────────────────────────────────────────────────────────

        self._socket_server = SocketServer(self.config)

        self.registry = SessionRegistry(max_clients=self.config.max_clients)

        self.computation_queue = ComputationQueue(
            capacity=self.config.queue_capacity,
            overflow_policy=self.config.overflow_policy,
            submit_timeout=self.config.submit_timeout,
        )

        # ─────────────────────────────────────────────────────────────────
        # RUNTIME STATE
        # ─────────────────────────────────────────────────────────────────

        # Live sessions by connection id, so shutdown can abort them
        self._sessions: Dict[str, Tuple[Session, threading.Thread]] = {}
        self._sessions_lock = threading.Lock()

        self._running = False
        self._stopped = threading.Event()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); the real port when configured with port=0."""
        return self._socket_server.address

    @property
    def session_count(self) -> int:
        with self._sessions_lock:
            return len(self._sessions)

    def list_clients(self) -> List[Client]:
        """Joined clients, oldest first."""
        return self.registry.list_clients()

    @property
    def stats(self) -> dict:
        return {
            "sessions": self.session_count,
            "clients": self.registry.client_count,
            "tasks": self.computation_queue.stats,
        }

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def run(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        show_banner: bool = False,
    ):
        """
        Start the server (blocking).

        Args:
            host: Override config host.
            port: Override config port.
            show_banner: Print the startup banner to stdout.
        """
        if host:
            self.config.host = host
        if port is not None:
            self.config.port = port

        self._running = True
        self._stopped.clear()
        self._setup_logging()

        self.computation_queue.start()

        logger.info(f"Starting calculation server on {self.config.host}:{self.config.port}")
        if show_banner:
            self.print_startup_banner()

        try:
            # Calls _handle_connection for each new client
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def shutdown(self):
        """
        Request a graceful shutdown.

        Returns immediately; run() performs the shutdown sequence and then
        returns. Use wait_for_stop() to block until it is done.
        """
        self._socket_server.shutdown()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the listener accepts connections."""
        return self._socket_server.wait_until_ready(timeout)

    def wait_for_stop(self, timeout: Optional[float] = None) -> bool:
        """Block until run() has finished shutting down."""
        return self._stopped.wait(timeout)

    def print_startup_banner(self):
        """Print server startup information."""
        host, port = self.address
        capacity = self.config.queue_capacity or "unbounded"
        print()
        print("╔══════════════════════════════════════════════════════════════╗")
        print(f"  {self.config.server_name} running on {host}:{port}")
        print(f"  Queue: {capacity} ({self.config.overflow_policy} when full, "
              f"{self.config.shutdown_policy} on shutdown)")
        print("  Press Ctrl+C to stop")
        print("╚══════════════════════════════════════════════════════════════╝")
        print()

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("calcserver").setLevel(level)

    def _shutdown(self):
        """
        Graceful shutdown (see module docstring for the sequence).
        """
        logger.info("Shutting down server...")
        self._running = False

        self.computation_queue.shutdown(
            policy=self.config.shutdown_policy,
            timeout=self.config.drain_timeout,
        )

        with self._sessions_lock:
            sessions = list(self._sessions.values())

        for session, _ in sessions:
            session.abort()

        for session, thread in sessions:
            thread.join(self.config.shutdown_timeout)
            if thread.is_alive():
                logger.warning(f"[{session.id}] Session did not finish in time")

        self._stopped.set()
        logger.info("Server stopped")

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """
        Start a Session thread for a freshly accepted connection.

        Called by SocketServer on the accept thread, so it must not block.
        """
        session = Session(
            connection=conn,
            registry=self.registry,
            computation_queue=self.computation_queue,
            max_outstanding=self.config.max_outstanding,
            flush_timeout=self.config.shutdown_timeout,
        )
        thread = threading.Thread(
            target=self._run_session,
            args=(session,),
            name=f"Session-{conn.id}",
            daemon=True,
        )

        with self._sessions_lock:
            self._sessions[conn.id] = (session, thread)

        logger.info(f"[{conn.id}] New connection from {conn.client_ip}:{conn.client_port}")
        thread.start()

    def _run_session(self, session: Session):
        """Session thread body."""
        try:
            session.run()
        finally:
            with self._sessions_lock:
                self._sessions.pop(session.id, None)


def create_server(config: Optional[ServerConfig] = None) -> CalcServer:
    """
    Factory for CalcServer instances.

    Example:
        server = create_server(ServerConfig(port=7000))
        server.run()
    """
    return CalcServer(config)
