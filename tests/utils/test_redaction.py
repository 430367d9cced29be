"""Tests for secret redaction helpers."""

from nexus.utils.redaction import mask_secret, redact_for_logging, sanitize_error_message


class TestRedactForLogging:
    def test_redacts_sensitive_keys(self):
        result = redact_for_logging({"api_key": "sk-123", "name": "Acme"})
        assert result == {"api_key": "***REDACTED***", "name": "Acme"}

    def test_matching_is_case_insensitive_substring(self):
        result = redact_for_logging({"X-Api-Key": "abc", "AuthToken": "t"})
        assert result["X-Api-Key"] == "***REDACTED***"
        assert result["AuthToken"] == "***REDACTED***"

    def test_walks_nested_dicts_and_lists(self):
        obj = {"items": [{"password": "p", "qty": 2}], "meta": {"secret": "s"}}
        result = redact_for_logging(obj)
        assert result["items"][0] == {"password": "***REDACTED***", "qty": 2}
        assert result["meta"]["secret"] == "***REDACTED***"

    def test_container_keys_fully_redacted(self):
        result = redact_for_logging({"headers": {"accept": "json"}})
        assert result["headers"] == "***REDACTED***"

    def test_does_not_mutate_input(self):
        obj = {"token": "t"}
        redact_for_logging(obj)
        assert obj == {"token": "t"}


class TestMaskSecret:
    def test_keeps_tail(self):
        assert mask_secret("abcdef123456") == "••••••••3456"

    def test_empty_value(self):
        assert mask_secret(None) == "••••••••"
        assert mask_secret("") == "••••••••"


class TestSanitizeErrorMessage:
    def test_none_passes_through(self):
        assert sanitize_error_message(None) is None

    def test_redacts_bearer_header(self):
        msg = sanitize_error_message("401: Authorization: Bearer abc.def.ghi")
        assert "abc.def.ghi" not in msg
        assert "***REDACTED***" in msg

    def test_redacts_vendor_key_formats(self):
        msg = sanitize_error_message(
            "Incorrect API key provided: sk-proj-ABCDEFGHIJKL and AIzaSyA1234567890abcdefghijk"
        )
        assert "sk-proj-ABCDEFGHIJKL" not in msg
        assert "AIzaSyA1234567890abcdefghijk" not in msg

    def test_redacts_json_and_query_values(self):
        msg = sanitize_error_message('{"api_key": "hunter2"} url?key=hunter3&x=1')
        assert "hunter2" not in msg
        assert "hunter3" not in msg

    def test_truncates(self):
        msg = sanitize_error_message("x" * 600, max_length=100)
        assert len(msg) == 100
        assert msg.endswith("...")
