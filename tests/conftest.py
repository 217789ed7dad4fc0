"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from dataclasses import replace
from typing import Callable, Generator, List
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from calcserver import CalcServer, ServerConfig
from calcserver.core import Connection
from calcserver.evaluator import evaluate


class RecordingSink:
    """Reply sink that remembers every delivered line."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.replies: List[str] = []
        self._cond = threading.Condition()

    def deliver(self, text: str) -> bool:
        with self._cond:
            self.replies.append(text)
            self._cond.notify_all()
        return self.accept

    def wait_for(self, count: int, timeout: float = 5.0) -> bool:
        """Wait until at least `count` replies arrived."""
        with self._cond:
            return self._cond.wait_for(lambda: len(self.replies) >= count, timeout)


class GatedEvaluator:
    """
    Evaluator that blocks until released.

    Lets tests hold the worker busy on the first task while they fill
    the queue behind it.
    """

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls: List[str] = []

    def __call__(self, expression: str) -> str:
        self.calls.append(expression)
        self.started.set()
        self.release.wait(5.0)
        return evaluate(expression)


@pytest.fixture
def make_sink() -> Callable[..., RecordingSink]:
    """Factory for recording reply sinks."""
    return RecordingSink


@pytest.fixture
def gated_evaluator() -> Generator[GatedEvaluator, None, None]:
    gate = GatedEvaluator()
    yield gate
    gate.release.set()  # Never leave the worker blocked


@pytest.fixture
def wait_for() -> Callable[..., bool]:
    """Poll a predicate until it is true or the timeout expires."""
    def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
        deadline = time.time() + timeout
        while time.time() < deadline:
            if predicate():
                return True
            time.sleep(0.02)
        return predicate()
    return _wait_for


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        queue_capacity=64,
        drain_timeout=2.0,
        shutdown_timeout=2.0,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def socket_pair() -> Generator[tuple, None, None]:
    """
    A connected (server_side, peer) socket pair.

    The server side is meant to be wrapped in a Connection; the peer plays
    the client.
    """
    server_side, peer = socket.socketpair()
    peer.settimeout(5.0)
    yield server_side, peer
    for sock in (server_side, peer):
        try:
            sock.close()
        except OSError:
            pass


@pytest.fixture
def make_connection(socket_pair) -> Callable[..., Connection]:
    """Build a Connection around the server side of socket_pair."""
    server_side, _ = socket_pair

    def _make(**kwargs) -> Connection:
        return Connection(socket=server_side, address=("127.0.0.1", 50000), **kwargs)
    return _make


class TestServer:
    """Test server helper that runs in a background thread."""

    def __init__(self, server: CalcServer):
        self.server = server
        self._thread: threading.Thread = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        """Start server in background thread."""
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def stop(self):
        """Stop the server and wait for the shutdown sequence."""
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=10.0)


@pytest.fixture
def server_factory(config) -> Generator[Callable[..., TestServer], None, None]:
    """Start CalcServers with custom config; all are stopped afterwards."""
    started: List[TestServer] = []

    def _start(**overrides) -> TestServer:
        test_srv = TestServer(CalcServer(replace(config, **overrides)))
        test_srv.start()
        started.append(test_srv)
        return test_srv

    yield _start

    for test_srv in started:
        test_srv.stop()


@pytest.fixture
def test_server(server_factory) -> TestServer:
    """A running server with default test settings."""
    return server_factory()
