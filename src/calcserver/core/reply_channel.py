"""
=============================================================================
REPLY CHANNEL
=============================================================================

The output side of a session. Replies come from two places:

    - the session thread itself   (Hello, Error: Invalid command, ...)
    - the evaluation worker       (Result: 11, Error: Division by zero)

Both end up in one outbox; a single writer thread owned by the session is
the only thing that ever touches the socket for writing.

A CALC reserves its place in the outbox the moment it is read, before the
worker has computed anything. The writer stops at that slot until the
worker fills it in, so every reply leaves in the order its request
arrived:

                 expect_reply()                       send()
    Session ────────┐                                  │
                    ▼                                  ▼
    outbox:   [ slot "CALC:1+1" ] [ slot "CALC:2*3" ] [ "Error: ..." ] ──► Writer ──► socket
                    ▲                   ▲
    Eval worker ────┴── deliver() ──────┘

The worker never blocks on a slow client, no lock is ever held while a
socket write is in progress, and a line produced by the session can
never overtake a result that is still being computed.

=============================================================================
"""

import logging
import queue
import threading
from typing import Optional

from .connection import Connection


logger = logging.getLogger(__name__)

# Marks the end of the outbox
_STOP = object()


class PendingReply:
    """
    A reserved place in a channel's outbox.

    The worker answers through deliver(); it is the reply sink handed to
    the computation queue for one task.
    """

    def __init__(self, channel: "ReplyChannel"):
        self._channel = channel
        self._filled = threading.Event()
        self.text: Optional[str] = None

    @property
    def is_filled(self) -> bool:
        return self._filled.is_set()

    def deliver(self, text: str) -> bool:
        """
        Fill in the reply. Only the first call counts.

        Returns:
            False if the reply cannot reach the client any more.
        """
        return self._channel._fill(self, text)

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._filled.wait(timeout)


class ReplyChannel:
    """
    Per-session outbox drained by a dedicated writer thread.

    Also counts reserved slots the worker has not filled yet, which the
    session uses to cap the number of outstanding calculations.
    """

    def __init__(self, connection: Connection):
        self._connection = connection
        self._outbox: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._broken = False
        self._outstanding = 0
        self._writer = threading.Thread(
            target=self._write_loop,
            name=f"Writer-{connection.id}",
            daemon=True,
        )

    @property
    def id(self) -> str:
        return self._connection.id

    @property
    def outstanding(self) -> int:
        """Replies promised by the worker but not delivered yet."""
        with self._lock:
            return self._outstanding

    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    def start(self):
        self._writer.start()

    # =========================================================================
    # PRODUCERS
    # =========================================================================

    def send(self, text: str) -> bool:
        """
        Queue a reply line produced by the session itself.

        The line goes out after every slot reserved before it.

        Returns:
            False if the channel is already closed.
        """
        with self._lock:
            if self._closed:
                return False
            self._outbox.put(text)
            return True

    def expect_reply(self) -> PendingReply:
        """
        Reserve the next place in the outbox for a worker reply.

        Raises:
            RuntimeError: If the channel is already closed
        """
        slot = PendingReply(self)
        with self._lock:
            if self._closed:
                raise RuntimeError(f"Reply channel {self.id} is closed")
            self._outstanding += 1
            self._outbox.put(slot)
        return slot

    def _fill(self, slot: PendingReply, text: str) -> bool:
        with self._lock:
            if slot.is_filled:
                return False
            slot.text = text
            self._outstanding -= 1
            slot._filled.set()
            return not self._broken

    # =========================================================================
    # WRITER
    # =========================================================================

    def _write_loop(self):
        """Send queued lines until the stop marker arrives."""
        while True:
            item = self._outbox.get()
            if item is _STOP:
                break
            if isinstance(item, PendingReply):
                item.wait()
                item = item.text
            if self._broken:
                continue  # Peer is gone, keep draining so close() returns
            if not self._connection.send_line(item):
                with self._lock:
                    self._broken = True

    def close(self, timeout: Optional[float] = None):
        """
        Stop accepting replies and wait for queued ones to be written.

        Reserved slots are still waited for, so a client that stopped
        sending gets the answers it already asked for. Idempotent. After
        close() returns the writer no longer touches the socket (unless
        the timeout expired), so the connection can be closed safely.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._outbox.put(_STOP)

        if self._writer.is_alive():
            self._writer.join(timeout)
            if self._writer.is_alive():
                logger.warning(f"[{self.id}] Reply writer did not finish in {timeout}s")
