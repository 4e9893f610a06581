"""Tests for secret redaction."""

from analysis_assistant.utils.redaction import redact_for_logging, sanitize_text


class TestRedactForLogging:

    def test_redacts_sensitive_keys(self):
        data = {"api_key": "k-123", "base_url": "http://engine", "auth_token": "t"}
        result = redact_for_logging(data)
        assert result["api_key"] == "***REDACTED***"
        assert result["auth_token"] == "***REDACTED***"
        assert result["base_url"] == "http://engine"

    def test_headers_are_redacted_whole(self):
        result = redact_for_logging({"headers": {"Accept": "application/json"}})
        assert result["headers"] == "***REDACTED***"

    def test_handles_nested_and_lists(self):
        data = {
            "engine": {"password": "p", "name": "primary"},
            "steps": [{"private_key": "0xabc", "step": "analyze_actors"}, "plain"],
        }
        result = redact_for_logging(data)
        assert result["engine"] == {"password": "***REDACTED***", "name": "primary"}
        assert result["steps"][0]["private_key"] == "***REDACTED***"
        assert result["steps"][0]["step"] == "analyze_actors"
        assert result["steps"][1] == "plain"

    def test_does_not_mutate_input(self):
        data = {"secret": "s"}
        redact_for_logging(data)
        assert data == {"secret": "s"}


class TestSanitizeText:

    def test_none_passes_through(self):
        assert sanitize_text(None) is None

    def test_bearer_header(self):
        text = sanitize_text("sent Authorization: Bearer abc.def.ghi to engine")
        assert "abc.def.ghi" not in text
        assert "***REDACTED***" in text

    def test_key_value_pairs(self):
        text = sanitize_text('api_key=abc123 and "password": "hunter2" done')
        assert "abc123" not in text
        assert "hunter2" not in text
        assert text.endswith("done")

    def test_hex_private_key(self):
        key = "0x" + "a1" * 32
        text = sanitize_text(f"deployer key {key} loaded")
        assert key not in text

    def test_contract_address_is_kept(self):
        address = "0x" + "b2" * 20
        assert sanitize_text(f"Vault deployed at {address}") == f"Vault deployed at {address}"

    def test_truncates(self):
        text = sanitize_text("x" * 100, max_length=10)
        assert text == "xxxxxxx..."
