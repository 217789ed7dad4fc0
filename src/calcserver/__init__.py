"""
=============================================================================
CALCSERVER - Multi-Client Arithmetic Server Over a Line Protocol
=============================================================================

Clients connect over TCP, register with JOIN:<username>, send
CALC:<expression> lines and get "Result: <value>" back. All expressions
from all clients are evaluated by one worker in submission order.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    calcserver/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m calcserver)
    ├── server.py            # CalcServer: wiring and lifecycle
    ├── session.py           # Per-connection protocol state machine
    ├── registry.py          # Joined clients + activity log
    ├── evaluator.py         # Two-pass arithmetic evaluator
    ├── config.py            # ServerConfig dataclass
    ├── errors.py            # Exception hierarchy
    ├── console.py           # Admin menu (list clients / shut down)
    ├── client.py            # Thin client + interactive mode
    ├── core/                # Networking and concurrency plumbing
    │   ├── socket_server.py # Listener / accept loop
    │   ├── connection.py    # Line-buffered socket wrapper
    │   ├── reply_channel.py # Per-session outbox + writer thread
    │   └── computation_queue.py  # FIFO + single evaluation worker
    └── protocol/            # Wire format
        ├── commands.py      # JOIN / CALC / CLOSE parsing
        └── replies.py       # Reply lines

=============================================================================
QUICK START
=============================================================================

    from calcserver import CalcServer, ServerConfig

    server = CalcServer(ServerConfig(port=6789))
    server.run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .server import CalcServer, create_server
from .evaluator import evaluate
from .client import CalcClient

__all__ = ["CalcServer", "ServerConfig", "CalcClient", "create_server", "evaluate", "__version__"]
