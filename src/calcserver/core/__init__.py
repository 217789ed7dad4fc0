"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking and concurrency plumbing underneath the protocol.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  • Binds the listening socket, runs the accept() loop               │
    │  • Wraps each client socket in a Connection                         │
    │  • Turns SIGTERM / SIGINT into a graceful shutdown                  │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ one Connection per client
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                   CONNECTION + REPLY CHANNEL                         │
    │  • Connection: buffered line reading, line writing, clean close     │
    │  • ReplyChannel: ordered outbox + writer, the only socket writer     │
    └─────────────────────────────────────────────────────────────────────┘
                                    ▲ reply lines
                                    │
    ┌─────────────────────────────────────────────────────────────────────┐
    │                      COMPUTATION QUEUE                               │
    │  • Bounded FIFO of EvaluationTask                                   │
    │  • ONE worker thread evaluates tasks in submission order            │
    │  • Reject / block on overflow, drain / discard on shutdown          │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState
from .reply_channel import PendingReply, ReplyChannel
from .computation_queue import (
    ComputationQueue,
    EvaluationTask,
    EvaluationWorker,
    WorkerState,
)

__all__ = [
    "SocketServer",       # Listener - accepts connections
    "Connection",         # Line-oriented wrapper for a client socket
    "ConnectionState",    # Enum for connection lifecycle states
    "ReplyChannel",       # Per-session outbox + writer thread
    "PendingReply",       # Reserved outbox place for a worker reply
    "ComputationQueue",   # FIFO + single evaluation worker
    "EvaluationTask",     # One pending calculation
    "EvaluationWorker",   # The worker thread
    "WorkerState",        # Enum for worker states
]
