"""Tests for log sanitization (app/utils/security.py)."""

from app.utils.security import sanitize_log_message


class TestSanitizeLogMessage:
    """Test suite for log injection prevention."""

    def test_removes_newlines(self):
        assert sanitize_log_message("web\n[ERROR] forged entry") == "web[ERROR] forged entry"

    def test_removes_carriage_returns_and_tabs(self):
        assert sanitize_log_message("a\r\nb\tc") == "abc"

    def test_removes_control_characters(self):
        sanitized = sanitize_log_message("text\x00null\x01control\x1fmore\x7f\x9b")

        assert sanitized == "textnullcontrolmore"

    def test_removes_ansi_escape(self):
        """Test the ESC byte of ANSI color codes is removed."""
        assert "\x1b" not in sanitize_log_message("\x1b[31mRed text\x1b[0m")

    def test_preserves_normal_text(self):
        message = "Container nginx:1.25 (abc123) started!"

        assert sanitize_log_message(message) == message

    def test_preserves_unicode(self):
        assert sanitize_log_message("café ✓") == "café ✓"

    def test_handles_none_input(self):
        assert sanitize_log_message(None) == ""

    def test_handles_numeric_input(self):
        assert sanitize_log_message(123) == "123"
        assert sanitize_log_message(45.67) == "45.67"

    def test_handles_bytes_input(self):
        assert sanitize_log_message(b"raw") == "b'raw'"

    def test_long_messages(self):
        sanitized = sanitize_log_message("x" * 10000 + "\n" + "y" * 10000)

        assert len(sanitized) == 20000
