"""
=============================================================================
SESSION: THE PER-CONNECTION PROTOCOL STATE MACHINE
=============================================================================

One Session owns one accepted connection for its whole life, from the
JOIN handshake to the final close, and runs on its own thread.

=============================================================================
STATES
=============================================================================

    ┌───────────────┐   JOIN:<name>    ┌──────────┐   CLOSE / EOF /   ┌────────┐
    │ AWAITING_JOIN │ ───────────────► │  ACTIVE  │ ────────────────► │ CLOSED │
    └───────┬───────┘  "Hello <name>"  └────┬─────┘   transport error └────────┘
            │                               │  ▲                          ▲
            │ anything else / EOF           │  │ CALC:<expr> → queue      │
            │ "Error: Invalid join ..."     │  │ other → "Error: Invalid  │
            │                               └──┘         command"         │
            └─────────────────────────────────────────────────────────────┘

    AWAITING_JOIN   exactly one line is read. A valid JOIN registers the
                    client; anything else gets the handshake error and
                    the connection is closed without reading further.

    ACTIVE          CALC submits an EvaluationTask and goes straight back
                    to reading; the worker answers asynchronously through
                    this session's reply channel, in request order. CLOSE
                    unregisters and confirms. End-of-stream unregisters
                    silently.

    CLOSED          pending replies written, socket closed, final log entry.
                    Reached on EVERY exit path (the run() body is wrapped
                    in try/finally inside the connection's context manager).

=============================================================================
WHO TOUCHES WHAT
=============================================================================

    Registry    only through register / remove_client / log_activity
    Queue       only through submit()
    Socket      reads: this thread; writes: the reply channel's writer

=============================================================================
"""

import logging
from enum import Enum
from typing import Optional

from .core import Connection, ComputationQueue, EvaluationTask, ReplyChannel
from .errors import LineTooLongError, ProtocolError, QueueClosedError
from .protocol import CommandType, parse_command, parse_join, replies
from .registry import Client, SessionRegistry


logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Protocol states of a session."""
    AWAITING_JOIN = "awaiting_join"
    ACTIVE = "active"
    CLOSED = "closed"


class Session:
    """
    Protocol state machine for one client connection.

    Usage (normally done by CalcServer on a fresh thread):
        session = Session(conn, registry, computation_queue)
        session.run()   # Returns once the connection is finished
    """

    def __init__(
        self,
        connection: Connection,
        registry: SessionRegistry,
        computation_queue: ComputationQueue,
        max_outstanding: int = 0,
        flush_timeout: Optional[float] = 5.0,
    ):
        """
        Args:
            connection: The accepted client connection.
            registry: Shared client registry and activity log.
            computation_queue: Where CALC expressions are sent.
            max_outstanding: Unanswered CALCs allowed at once (0 = unlimited).
            flush_timeout: How long closing waits for queued and pending replies.
        """
        self.connection = connection
        self.registry = registry
        self.computation_queue = computation_queue
        self.max_outstanding = max_outstanding
        self.flush_timeout = flush_timeout

        self.channel = ReplyChannel(connection)
        self.state = SessionState.AWAITING_JOIN
        self.client: Optional[Client] = None

    @property
    def id(self) -> str:
        return self.connection.id

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """
        Drive the session until the connection is finished.

        Never raises: protocol and transport errors end only this session.
        """
        self.channel.start()

        with self.connection:  # Context manager ensures the socket is closed
            try:
                if self._handshake():
                    self._command_loop()

            except LineTooLongError as e:
                logger.warning(f"[{self.id}] Line longer than {e.limit} bytes, closing")
                self.channel.send(replies.LINE_TOO_LONG)

            except TimeoutError:
                logger.info(f"[{self.id}] Idle timeout, closing")

            except OSError as e:
                logger.info(f"[{self.id}] Connection error: {e}")

            except Exception as e:
                logger.exception(f"[{self.id}] Session error: {e}")

            finally:
                self._close()

    def abort(self):
        """
        Ask the session to end from another thread (server shutdown).

        Unblocks the pending read; the session then runs its normal cleanup.
        """
        self.connection.abort()

    def _close(self):
        """Enter CLOSED: unregister, flush replies, write the final log entry."""
        self.state = SessionState.CLOSED

        if self.client is not None:
            self.registry.remove_client(self.client)

        self.channel.close(timeout=self.flush_timeout)

        if self.client is not None:
            self.registry.log_activity(self.client, "Disconnected")

        logger.debug(f"[{self.id}] Session closed")

    # =========================================================================
    # AWAITING_JOIN
    # =========================================================================

    def _handshake(self) -> bool:
        """
        Read and process the JOIN line.

        Returns:
            True if the session is now ACTIVE.
        """
        try:
            line = self.connection.read_line()
            username = parse_join(line)
        except ProtocolError as e:
            # Includes LineTooLongError: an oversized first line is not a JOIN
            logger.info(f"[{self.id}] Rejected handshake from {self.connection.client_ip}: {e}")
            self.channel.send(replies.INVALID_JOIN)
            return False

        client = Client(address=self.connection.client_ip, username=username)
        if not self.registry.register(client):
            logger.warning(f"[{self.id}] Registry full, refusing {username!r}")
            self.channel.send(replies.SERVER_FULL)
            return False

        self.client = client
        self.state = SessionState.ACTIVE
        self.channel.send(replies.greeting(username))
        return True

    # =========================================================================
    # ACTIVE
    # =========================================================================

    def _command_loop(self):
        """Read and dispatch commands until CLOSE or end-of-stream."""
        while self.state is SessionState.ACTIVE:
            line = self.connection.read_line()
            if line is None:
                logger.info(f"[{self.id}] {self.client.username} disconnected")
                return

            command = parse_command(line)

            if command.type is CommandType.CALC:
                self._submit(command.argument)
            elif command.type is CommandType.CLOSE:
                self._handle_close()
            elif command.type is CommandType.EMPTY:
                continue
            else:
                logger.debug(f"[{self.id}] Invalid command {line[:40]!r}")
                self.channel.send(replies.INVALID_COMMAND)

    def _submit(self, expression: str):
        """Queue a calculation; the reply arrives later via the worker."""
        if self.max_outstanding and self.channel.outstanding >= self.max_outstanding:
            self.channel.send(replies.TOO_MANY_PENDING)
            return

        self.registry.log_activity(self.client, f"Calculation: {expression}")

        # Reserve the reply's place before the worker can answer
        slot = self.channel.expect_reply()
        task = EvaluationTask(
            expression=expression,
            reply_to=slot,
            session_id=self.id,
        )

        try:
            accepted = self.computation_queue.submit(task)
        except QueueClosedError as e:
            slot.deliver(replies.error_from(e))
            return

        if not accepted:
            slot.deliver(replies.SERVER_BUSY)

    def _handle_close(self):
        """CLOSE: unregister, confirm, and leave the command loop."""
        self.registry.log_activity(self.client, "Requested disconnect")
        self.registry.remove_client(self.client)

        self.channel.send(replies.CONNECTION_CLOSED)
        self.state = SessionState.CLOSED
