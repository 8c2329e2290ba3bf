"""Tests for the AMI wire format."""
import pytest

from asterisk_sync.ami.protocol import AmiResponse, encode_action, parse_frame, split_line


class TestEncodeAction:
    """Tests for request serialization."""

    def test_fields_in_order_with_blank_terminator(self):
        """Fields are written as Key: Value lines ending with a blank line."""
        data = encode_action([("Action", "Login"), ("Username", "admin"), ("Secret", "pw")])
        assert data == b"Action: Login\r\nUsername: admin\r\nSecret: pw\r\n\r\n"

    def test_mapping_input(self):
        """A dict is accepted and keeps insertion order."""
        data = encode_action({"Action": "Ping"})
        assert data == b"Action: Ping\r\n\r\n"

    def test_non_string_values(self):
        """Values are converted with str()."""
        assert b"Port: 5060\r\n" in encode_action([("Action", "X"), ("Port", 5060)])

    def test_line_breaks_rejected(self):
        """A value with a line break would inject extra fields."""
        with pytest.raises(ValueError):
            encode_action([("Action", "Command"), ("Command", "core show\r\nAction: Logoff")])


class TestParseFrame:
    """Tests for frame decoding."""

    def test_split_on_first_colon(self):
        """Only the first colon separates key and value."""
        frame = parse_frame("Event: ContactStatus\r\nURI: sip:101@10.0.0.5:5060\r\n")
        assert frame["URI"] == "sip:101@10.0.0.5:5060"

    def test_trims_key_and_value(self):
        """Whitespace around keys and values is dropped."""
        assert split_line("  AOR :  101  ") == ("AOR", "101")

    def test_lines_without_colon_ignored(self):
        """Lines without a colon carry no field."""
        frame = parse_frame("Event: Test\r\ngarbage\r\n")
        assert frame == {"Event": "Test"}

    def test_repeated_key_keeps_last(self):
        """A repeated key keeps its last value."""
        assert parse_frame("A: 1\nA: 2\n") == {"A": "2"}


class TestAmiResponse:
    """Tests for response classification."""

    def test_success(self):
        """Response: Success is successful."""
        response = AmiResponse.from_text("Response: Success\r\nMessage: Authentication accepted\r\n\r\n")
        assert response.success
        assert response.message == "Authentication accepted"

    def test_error(self):
        """Response: Error is not successful."""
        response = AmiResponse.from_text("Response: Error\r\nMessage: Authentication failed\r\n")
        assert not response.success

    def test_empty(self):
        """An empty response is neither successful nor terminated data."""
        response = AmiResponse(lines=[], terminated=False)
        assert response.empty
        assert not response.success

    def test_output_lines(self):
        """Command output given as Output: lines."""
        response = AmiResponse.from_text(
            "Response: Success\r\nMessage: Command output follows\r\n"
            "Output: Endpoint:  101  Unavailable  0 of inf\r\nOutput: Objects found: 1\r\n"
        )
        assert response.output == "Endpoint:  101  Unavailable  0 of inf\nObjects found: 1"

    def test_output_follows_style(self):
        """Older servers reply with Response: Follows and an end marker."""
        response = AmiResponse.from_text(
            "Response: Follows\r\nPrivilege: Command\r\nActionID: 7\r\n"
            "Endpoint:  101  Not in use  0 of inf\r\n--END COMMAND--\r\n"
        )
        assert response.output == "Endpoint:  101  Not in use  0 of inf"

    def test_output_absent(self):
        """Non-command responses have no output."""
        assert AmiResponse.from_text("Response: Success\r\n").output == ""
