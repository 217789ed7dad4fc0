"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration management for the calculation server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m calcserver --port 7000                          │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── CALC_PORT=7000 python -m calcserver                       │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
BOUNDED RESOURCES
=============================================================================

Every shared resource that a client can grow has an explicit limit here:

    queue_capacity      How many calculations may wait for the worker
    overflow_policy     What happens when that limit is hit
    max_clients         How many users may be joined at once
    max_outstanding     How many unanswered CALCs one session may have
    max_line_length     How long a single protocol line may be

A value of 0 (or None for max_clients) means "unbounded".

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


OVERFLOW_POLICIES = ("reject", "block")
SHUTDOWN_POLICIES = ("drain", "discard")


@dataclass
class ServerConfig:
    """
    Configuration for the calculation server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, max_line_length, idle_timeout

    COMPUTATION QUEUE
    - queue_capacity, overflow_policy, submit_timeout

    SESSIONS
    - max_clients, max_outstanding

    SHUTDOWN
    - shutdown_policy, drain_timeout, shutdown_timeout

    LOGGING
    - log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address to bind to.
    - "127.0.0.1" - Localhost only (development)
    - "0.0.0.0" - All network interfaces
    """

    port: int = 6789
    """
    The port number to listen on. 0 lets the OS pick a free port.
    """

    backlog: int = 128
    """
    Maximum number of connections queued by the OS before accept().
    """

    buffer_size: int = 4096
    """
    Size of each recv() call in bytes.
    """

    max_line_length: int = 8192
    """
    Longest accepted protocol line in bytes (without the newline).
    0 disables the check.
    """

    idle_timeout: Optional[float] = None
    """
    Seconds a session may sit without sending a line.
    None = wait until the peer closes the connection.
    """

    # ─────────────────────────────────────────────────────────────────────
    # COMPUTATION QUEUE
    # ─────────────────────────────────────────────────────────────────────

    queue_capacity: int = 1024
    """
    Maximum number of pending calculations. 0 = unbounded.
    """

    overflow_policy: str = "reject"
    """
    What to do when the queue is full:
    - "reject" - answer the CALC with "Error: Server busy"
    - "block"  - make the submitting session wait for space
    """

    submit_timeout: Optional[float] = None
    """
    Upper bound for a blocked submit ("block" policy only).
    None = wait as long as it takes.
    """

    # ─────────────────────────────────────────────────────────────────────
    # SESSIONS
    # ─────────────────────────────────────────────────────────────────────

    max_clients: Optional[int] = None
    """
    Maximum number of joined users. None = unbounded.
    """

    max_outstanding: int = 0
    """
    Maximum unanswered CALC requests per session. 0 = unlimited.
    Replies always come back in submission order.
    """

    # ─────────────────────────────────────────────────────────────────────
    # SHUTDOWN
    # ─────────────────────────────────────────────────────────────────────

    shutdown_policy: str = "drain"
    """
    What happens to queued calculations on shutdown:
    - "drain"   - the worker finishes them first
    - "discard" - they are dropped and answered with an error
    """

    drain_timeout: float = 10.0
    """
    Maximum seconds spent draining the queue on shutdown.
    """

    shutdown_timeout: float = 5.0
    """
    Maximum seconds to wait for each session thread to exit.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """
    Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """

    server_name: str = "CalcServer/1.0"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        CALC_HOST             Server host (default: 127.0.0.1)
        CALC_PORT             Server port (default: 6789)
        CALC_QUEUE_CAPACITY   Pending calculation limit (default: 1024)
        CALC_OVERFLOW_POLICY  reject | block (default: reject)
        CALC_SHUTDOWN_POLICY  drain | discard (default: drain)
        CALC_MAX_CLIENTS      Joined user limit (default: unbounded)
        CALC_IDLE_TIMEOUT     Session idle timeout (default: none)
        CALC_LOG_LEVEL        Logging level (default: INFO)

        =====================================================================
        """
        max_clients = os.getenv("CALC_MAX_CLIENTS")
        idle_timeout = os.getenv("CALC_IDLE_TIMEOUT")
        return cls(
            host=os.getenv("CALC_HOST", "127.0.0.1"),
            port=int(os.getenv("CALC_PORT", "6789")),
            queue_capacity=int(os.getenv("CALC_QUEUE_CAPACITY", "1024")),
            overflow_policy=os.getenv("CALC_OVERFLOW_POLICY", "reject"),
            shutdown_policy=os.getenv("CALC_SHUTDOWN_POLICY", "drain"),
            max_clients=int(max_clients) if max_clients else None,
            idle_timeout=float(idle_timeout) if idle_timeout else None,
            log_level=os.getenv("CALC_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called by the server at construction time so a bad value fails
        at startup instead of on the first connection.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")

        if self.max_line_length < 0:
            raise ValueError("max_line_length must be >= 0")

        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")

        if self.queue_capacity < 0:
            raise ValueError("queue_capacity must be >= 0")

        if self.overflow_policy not in OVERFLOW_POLICIES:
            raise ValueError(
                f"Invalid overflow_policy: {self.overflow_policy!r}. "
                f"Must be one of {', '.join(OVERFLOW_POLICIES)}."
            )

        if self.shutdown_policy not in SHUTDOWN_POLICIES:
            raise ValueError(
                f"Invalid shutdown_policy: {self.shutdown_policy!r}. "
                f"Must be one of {', '.join(SHUTDOWN_POLICIES)}."
            )

        if self.max_clients is not None and self.max_clients < 1:
            raise ValueError("max_clients must be >= 1")

        if self.max_outstanding < 0:
            raise ValueError("max_outstanding must be >= 0")

        if self.drain_timeout <= 0 or self.shutdown_timeout <= 0:
            raise ValueError("drain_timeout and shutdown_timeout must be > 0")


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Type-safe configuration with dataclass
# 2. Environment variable support (CALC_*)
# 3. Validation at startup (fail-fast)
# 4. Explicit limits for every client-growable resource
# =============================================================================
