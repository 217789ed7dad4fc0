"""
=============================================================================
SESSION REGISTRY
=============================================================================

Bookkeeping for who is connected and what they have done.

=============================================================================
ONE LOCK, ATOMIC OPERATIONS
=============================================================================

Every session thread writes here (join, calculation, disconnect) and the
admin console reads from here. The collections are never handed out;
callers only see the operations below, each executed under one lock:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SessionRegistry                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   register(client)        add client  + log "Connection established"│
    │   remove_client(client)   drop client + log "Connection terminated" │
    │   log_activity(client, m) log "User <name> (<addr>): m"             │
    │   list_clients()          snapshot of clients (join order)          │
    │   activity_log()          snapshot of log entries (append order)    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Because the log append happens inside the same critical section as the
mutation it describes, log order always agrees with registry state: you
can never read "Connection terminated: alice" while alice is still listed.

Entries are also emitted on the "calcserver.activity" logger so they show
up next to the rest of the server output.

=============================================================================
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional


# Namespaced so it can be routed separately:
#   logging.getLogger("calcserver.activity").addHandler(file_handler)
activity_logger = logging.getLogger("calcserver.activity")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_duration(duration: timedelta) -> str:
    """Render a duration as HH:MM:SS (hours are not wrapped at 24)."""
    total_seconds = max(int(duration.total_seconds()), 0)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


@dataclass(frozen=True)
class Client:
    """
    A joined user.

    Immutable: the only thing that changes over time is the derived
    connection duration, which is computed on demand.

    Attributes:
        address: Client IP address.
        username: Name sent in the JOIN command.
        connected_at: When the JOIN succeeded.
    """
    address: str
    username: str
    connected_at: datetime = field(default_factory=datetime.now)

    @property
    def duration(self) -> timedelta:
        """How long this client has been connected."""
        return datetime.now() - self.connected_at

    @property
    def duration_text(self) -> str:
        return format_duration(self.duration)

    def __str__(self) -> str:
        connected = self.connected_at.strftime(TIMESTAMP_FORMAT)
        return (
            f"User: {self.username}, IP: {self.address}, "
            f"Connected: {connected}, Duration: {self.duration_text}"
        )


@dataclass(frozen=True)
class ActivityLogEntry:
    """One line of the activity log."""
    timestamp: datetime
    message: str

    def to_text(self) -> str:
        return f"[{self.timestamp.strftime(TIMESTAMP_FORMAT)}] {self.message}"


class SessionRegistry:
    """
    Thread-safe set of joined clients plus an append-only activity log.

    Clients are compared by identity, so two users who pick the same name
    from the same address are still two separate entries.

    Usage:
        registry = SessionRegistry()
        client = Client(address="10.0.0.5", username="alice")
        registry.register(client)
        registry.log_activity(client, "Calculation: 3+4*2")
        registry.remove_client(client)   # True
        registry.remove_client(client)   # False, already gone
    """

    def __init__(self, max_clients: Optional[int] = None):
        """
        Args:
            max_clients: Refuse registrations beyond this many joined
                         clients. None = unbounded.
        """
        self.max_clients = max_clients
        self._clients: List[Client] = []
        self._log: List[ActivityLogEntry] = []
        self._lock = threading.Lock()

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def register(self, client: Client) -> bool:
        """
        Add a client to the registry.

        Returns:
            True if registered, False if the registry is full.
        """
        with self._lock:
            if self.max_clients is not None and len(self._clients) >= self.max_clients:
                self._append(
                    f"Connection refused (server full): {client.username} ({client.address})"
                )
                return False
            self._clients.append(client)
            self._append(f"Connection established: {client.username} ({client.address})")
            return True

    def remove_client(self, client: Client) -> bool:
        """
        Remove a client from the registry.

        Safe to call more than once; only the first call removes anything
        and logs the termination.

        Returns:
            True if the client was present and is now removed.
        """
        with self._lock:
            for index, registered in enumerate(self._clients):
                if registered is client:
                    del self._clients[index]
                    self._append(
                        f"Connection terminated: {client.username} ({client.address})"
                    )
                    return True
            return False

    def log_activity(self, client: Client, message: str) -> None:
        """Append an activity entry attributed to a client."""
        with self._lock:
            self._append(f"User {client.username} ({client.address}): {message}")

    def _append(self, message: str) -> None:
        """Append one log entry. Caller must hold self._lock."""
        entry = ActivityLogEntry(timestamp=datetime.now(), message=message)
        self._log.append(entry)
        activity_logger.info(entry.message)

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def list_clients(self) -> List[Client]:
        """Joined clients in registration order (a copy)."""
        with self._lock:
            return list(self._clients)

    def activity_log(self) -> List[ActivityLogEntry]:
        """All activity entries in append order (a copy)."""
        with self._lock:
            return list(self._log)

    def __contains__(self, client: Client) -> bool:
        with self._lock:
            return any(registered is client for registered in self._clients)

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)
