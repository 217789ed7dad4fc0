"""
Unit tests for the Session protocol state machine.

Each test drives one Session over a socketpair: the test plays the client
on the peer socket while the session runs on its own thread against a
real registry and computation queue.
"""

import socket
import threading
from typing import Optional

import pytest
from calcserver.core import ComputationQueue
from calcserver.evaluator import evaluate
from calcserver.protocol import replies
from calcserver.registry import Client, SessionRegistry
from calcserver.session import Session, SessionState


class SessionHarness:
    """Runs a Session in the background and talks to it as a client."""

    def __init__(self, peer: socket.socket, session: Session):
        self.peer = peer
        self.session = session
        self.registry = session.registry
        self.queue = session.computation_queue
        self._reader = peer.makefile("r", encoding="utf-8", newline="\n")
        self._thread = threading.Thread(target=session.run, daemon=True)

    def start(self) -> "SessionHarness":
        self._thread.start()
        return self

    def send(self, *lines: str):
        self.peer.sendall("".join(line + "\n" for line in lines).encode("utf-8"))

    def recv(self) -> Optional[str]:
        """Next reply line, or None once the server closed the connection."""
        line = self._reader.readline()
        return line.rstrip("\n") if line else None

    def hang_up(self):
        """Close the client's write side (end-of-stream for the session)."""
        self.peer.shutdown(socket.SHUT_WR)

    def wait(self, timeout: float = 5.0) -> bool:
        """Wait for the session thread; True if it finished."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def close(self):
        self._reader.close()


@pytest.fixture
def harness(socket_pair, make_connection):
    """Factory building a started SessionHarness; cleans everything up."""
    _, peer = socket_pair
    built = []

    def _make(
        evaluator=evaluate,
        capacity: int = 0,
        registry: Optional[SessionRegistry] = None,
        max_outstanding: int = 0,
        **conn_kwargs,
    ) -> SessionHarness:
        computation_queue = ComputationQueue(capacity=capacity, evaluator=evaluator)
        computation_queue.start()
        session = Session(
            connection=make_connection(**conn_kwargs),
            registry=registry if registry is not None else SessionRegistry(),
            computation_queue=computation_queue,
            max_outstanding=max_outstanding,
            flush_timeout=2.0,
        )
        h = SessionHarness(peer, session).start()
        built.append(h)
        return h

    yield _make

    for h in built:
        try:
            h.hang_up()
        except OSError:
            pass
        h.wait()
        h.close()
        h.queue.shutdown(timeout=2.0)


def activity(registry: SessionRegistry) -> list:
    return [entry.message for entry in registry.activity_log()]


class TestHandshake:
    """Tests for the AWAITING_JOIN state."""

    def test_join_registers_client(self, harness):
        h = harness()

        h.send("JOIN:alice")

        assert h.recv() == "Hello alice"
        assert [c.username for c in h.registry.list_clients()] == ["alice"]
        assert h.session.state == SessionState.ACTIVE
        assert h.session.client.address == "127.0.0.1"

    def test_join_strips_username(self, harness):
        h = harness()

        h.send("JOIN:  bob  ")

        assert h.recv() == "Hello bob"

    @pytest.mark.parametrize("first_line", ["HELLO", "JOIN:", "JOIN:   ", "CALC:1+1", "CLOSE"])
    def test_invalid_first_line(self, harness, first_line):
        """Test a bad first line ends the connection with the handshake error."""
        h = harness()

        h.send(first_line)

        assert h.recv() == replies.INVALID_JOIN
        assert h.recv() is None
        assert h.wait()
        assert h.registry.list_clients() == []
        assert h.session.state == SessionState.CLOSED

    def test_nothing_processed_after_failed_handshake(self, harness):
        """Test commands pipelined behind a bad handshake are ignored."""
        h = harness()

        h.send("HELLO", "CALC:1+1", "CLOSE")

        assert h.recv() == replies.INVALID_JOIN
        assert h.recv() is None
        assert h.queue.stats["completed"] == 0
        assert activity(h.registry) == []

    def test_eof_before_join(self, harness):
        """Test end-of-stream during the handshake still gets the error."""
        h = harness()

        h.hang_up()

        assert h.recv() == replies.INVALID_JOIN
        assert h.wait()

    def test_oversized_join(self, harness):
        h = harness(max_line_length=16)

        h.send("JOIN:" + "a" * 100)

        assert h.recv() == replies.INVALID_JOIN
        assert h.recv() is None

    def test_server_full(self, harness):
        """Test the registry limit is reported and nothing is registered."""
        registry = SessionRegistry(max_clients=1)
        existing = Client("10.0.0.9", "zoe")
        registry.register(existing)
        h = harness(registry=registry)

        h.send("JOIN:alice")

        assert h.recv() == replies.SERVER_FULL
        assert h.recv() is None
        assert registry.list_clients() == [existing]


class TestCommands:
    """Tests for the ACTIVE state."""

    def test_full_conversation(self, harness):
        """Test JOIN, CALC, a bad command, CLOSE and the resulting log."""
        h = harness()

        h.send("JOIN:alice")
        assert h.recv() == "Hello alice"

        h.send("CALC:3+4*2")
        assert h.recv() == "Result: 11"

        h.send("FOO")
        assert h.recv() == replies.INVALID_COMMAND

        h.send("CALC:1/0")
        assert h.recv() == "Error: Division by zero"

        h.send("CLOSE")
        assert h.recv() == replies.CONNECTION_CLOSED
        assert h.recv() is None

        assert h.wait()
        assert h.registry.list_clients() == []
        assert activity(h.registry) == [
            "Connection established: alice (127.0.0.1)",
            "User alice (127.0.0.1): Calculation: 3+4*2",
            "User alice (127.0.0.1): Calculation: 1/0",
            "User alice (127.0.0.1): Requested disconnect",
            "Connection terminated: alice (127.0.0.1)",
            "User alice (127.0.0.1): Disconnected",
        ]

    def test_pipelined_requests_keep_order(self, harness):
        """Test replies follow request order, CLOSE confirmation last."""
        h = harness()

        h.send("JOIN:alice", *[f"CALC:{i}*2" for i in range(20)], "CLOSE")

        assert h.recv() == "Hello alice"
        assert [h.recv() for _ in range(20)] == [f"Result: {i * 2}" for i in range(20)]
        assert h.recv() == replies.CONNECTION_CLOSED
        assert h.recv() is None

    def test_session_replies_wait_for_pending_result(self, harness, gated_evaluator, wait_for):
        """Test an error and the CLOSE confirmation queue behind a running CALC."""
        h = harness(evaluator=gated_evaluator)

        h.send("JOIN:alice", "CALC:1+1")
        assert gated_evaluator.started.wait(5.0)
        h.send("FOO", "CLOSE")
        assert wait_for(lambda: h.session.state is SessionState.CLOSED)
        gated_evaluator.release.set()

        assert [h.recv() for _ in range(4)] == [
            "Hello alice",
            "Result: 2",
            replies.INVALID_COMMAND,
            replies.CONNECTION_CLOSED,
        ]
        assert h.recv() is None

    def test_empty_lines_ignored(self, harness):
        h = harness()

        h.send("JOIN:alice", "", "   ", "CALC:1+1")

        assert h.recv() == "Hello alice"
        assert h.recv() == "Result: 2"

    def test_second_join_rejected(self, harness):
        h = harness()

        h.send("JOIN:alice", "JOIN:bob")

        assert h.recv() == "Hello alice"
        assert h.recv() == replies.INVALID_COMMAND
        assert [c.username for c in h.registry.list_clients()] == ["alice"]

    def test_disconnect_removes_client_once(self, harness):
        """Test end-of-stream unregisters the client exactly once."""
        h = harness()

        h.send("JOIN:alice")
        assert h.recv() == "Hello alice"
        h.hang_up()

        assert h.wait()
        assert h.registry.list_clients() == []
        terminated = [m for m in activity(h.registry) if m.startswith("Connection terminated")]
        assert len(terminated) == 1
        assert activity(h.registry)[-1] == "User alice (127.0.0.1): Disconnected"

    def test_abort_ends_session(self, harness):
        """Test abort() from another thread ends an idle session."""
        h = harness()

        h.send("JOIN:alice")
        assert h.recv() == "Hello alice"
        h.session.abort()

        assert h.wait()
        assert h.registry.list_clients() == []

    def test_line_too_long(self, harness):
        h = harness(max_line_length=16)

        h.send("JOIN:alice")
        assert h.recv() == "Hello alice"

        h.send("CALC:" + "1+" * 20 + "1")

        assert h.recv() == replies.LINE_TOO_LONG
        assert h.recv() is None
        assert h.wait()
        assert h.registry.list_clients() == []

    def test_line_too_long_after_pipelined_calcs(self, harness, gated_evaluator, wait_for):
        """Test the line-length error arrives after the results it follows."""
        h = harness(evaluator=gated_evaluator, max_line_length=32)

        h.send("JOIN:alice", *["CALC:1+1"] * 20, "CALC:" + "1+" * 40 + "1")
        assert wait_for(lambda: h.session.state is SessionState.CLOSED)
        gated_evaluator.release.set()

        assert h.recv() == "Hello alice"
        assert [h.recv() for _ in range(20)] == ["Result: 2"] * 20
        assert h.recv() == replies.LINE_TOO_LONG
        assert h.recv() is None


class TestBackpressure:
    """Tests for the per-session and queue limits."""

    def test_too_many_pending(self, harness, gated_evaluator, wait_for):
        """Test max_outstanding refuses a CALC while one is unanswered."""
        h = harness(evaluator=gated_evaluator, max_outstanding=1)

        h.send("JOIN:alice", "CALC:1+1")
        assert gated_evaluator.started.wait(5.0)
        h.send("CALC:2+2", "FOO")
        assert wait_for(lambda: h.session.connection.lines_read >= 4)
        gated_evaluator.release.set()

        assert [h.recv() for _ in range(4)] == [
            "Hello alice",
            "Result: 2",
            replies.TOO_MANY_PENDING,
            replies.INVALID_COMMAND,
        ]

        h.send("CALC:2+2")
        assert h.recv() == "Result: 4"

    def test_server_busy(self, harness, gated_evaluator, wait_for):
        """Test a CALC refused by a full queue is answered in its turn."""
        h = harness(evaluator=gated_evaluator, capacity=1)

        h.send("JOIN:alice", "CALC:1+1")
        assert gated_evaluator.started.wait(5.0)
        h.send("CALC:2+2", "CALC:3+3", "FOO")
        assert wait_for(lambda: h.session.connection.lines_read >= 5)
        gated_evaluator.release.set()

        assert [h.recv() for _ in range(5)] == [
            "Hello alice",
            "Result: 2",
            "Result: 4",
            replies.SERVER_BUSY,
            replies.INVALID_COMMAND,
        ]
        assert h.session.channel.outstanding == 0
        assert h.queue.stats["rejected"] == 1

    def test_queue_shutting_down(self, harness):
        """Test CALC after queue shutdown gets the shutdown error."""
        h = harness()
        h.queue.shutdown(timeout=2.0)

        h.send("JOIN:alice", "CALC:1+1")

        assert h.recv() == "Hello alice"
        assert h.recv() == replies.SERVER_SHUTTING_DOWN
        assert h.session.channel.outstanding == 0
