"""
Unit tests for command parsing and reply formatting.
"""

import pytest
from calcserver.protocol import CommandType, parse_command, parse_join, replies
from calcserver.errors import DivisionByZeroError, ProtocolError, QueueClosedError


class TestParseJoin:
    """Tests for the handshake parser."""

    def test_valid_join(self):
        """Test the username is everything after the prefix."""
        assert parse_join("JOIN:alice") == "alice"

    def test_username_whitespace_stripped(self):
        """Test surrounding whitespace is removed from the username."""
        assert parse_join("JOIN:  bob smith  ") == "bob smith"

    def test_username_may_contain_colons(self):
        """Test only the first colon separates the prefix."""
        assert parse_join("JOIN:a:b") == "a:b"

    @pytest.mark.parametrize("line", [
        "JOIN:",
        "JOIN:   ",
        "join:alice",
        "JOIN alice",
        "HELLO",
        "CALC:1+1",
        "",
    ])
    def test_invalid_join(self, line):
        """Test anything but JOIN:<name> is a protocol error."""
        with pytest.raises(ProtocolError):
            parse_join(line)

    def test_end_of_stream(self):
        """Test a missing first line is a protocol error."""
        with pytest.raises(ProtocolError):
            parse_join(None)


class TestParseCommand:
    """Tests for commands after the handshake."""

    def test_calc(self):
        """Test CALC carries the expression text untouched."""
        command = parse_command("CALC: 3 + 4*2")

        assert command.type == CommandType.CALC
        assert command.argument == " 3 + 4*2"
        assert command.raw == "CALC: 3 + 4*2"

    def test_calc_with_empty_expression(self):
        """Test an empty CALC is still a CALC (the evaluator rejects it)."""
        command = parse_command("CALC:")

        assert command.type == CommandType.CALC
        assert command.argument == ""

    def test_close(self):
        """Test CLOSE is recognized."""
        assert parse_command("CLOSE").type == CommandType.CLOSE

    @pytest.mark.parametrize("line", ["close", "CLOSE ", " CLOSE", "CLOSE:now"])
    def test_close_must_match_exactly(self, line):
        """Test near-misses of CLOSE are unknown commands."""
        assert parse_command(line).type == CommandType.UNKNOWN

    def test_second_join_is_unknown(self):
        """Test JOIN after the handshake is not accepted."""
        assert parse_command("JOIN:alice").type == CommandType.UNKNOWN

    @pytest.mark.parametrize("line", ["", "   ", "\t"])
    def test_blank_lines(self, line):
        """Test blank lines are EMPTY."""
        assert parse_command(line).type == CommandType.EMPTY

    def test_garbage(self):
        """Test arbitrary text is UNKNOWN."""
        command = parse_command("FOO")

        assert command.type == CommandType.UNKNOWN
        assert command.argument is None

    def test_prefix_is_case_sensitive(self):
        """Test calc: is not CALC:."""
        assert parse_command("calc:1+1").type == CommandType.UNKNOWN


class TestReplies:
    """Tests for reply lines."""

    def test_greeting(self):
        assert replies.greeting("alice") == "Hello alice"

    def test_result(self):
        assert replies.result("11") == "Result: 11"

    def test_error_from_exception(self):
        """Test exception messages become the error reason."""
        assert replies.error_from(DivisionByZeroError()) == "Error: Division by zero"
        assert replies.error_from(QueueClosedError()) == replies.SERVER_SHUTTING_DOWN

    def test_fixed_replies(self):
        """Test the fixed reply texts clients depend on."""
        assert replies.INVALID_JOIN == "Error: Invalid join format. Use JOIN:username"
        assert replies.INVALID_COMMAND == "Error: Invalid command"
        assert replies.CONNECTION_CLOSED == "Connection closed"

    def test_replies_are_single_lines(self):
        """Test no reply embeds a newline."""
        for text in (
            replies.INVALID_JOIN,
            replies.INVALID_COMMAND,
            replies.CONNECTION_CLOSED,
            replies.SERVER_BUSY,
            replies.SERVER_FULL,
            replies.SERVER_SHUTTING_DOWN,
            replies.TOO_MANY_PENDING,
            replies.LINE_TOO_LONG,
        ):
            assert "\n" not in text
