"""Tests for verification log parsing."""

from analysis_assistant.services.verification_logs import (
    explain_verification_error,
    extract_error_message,
    parse_verification_logs,
)


class TestParseVerificationLogs:
    def test_missing_data(self):
        result = parse_verification_logs({})
        assert result.logs == "No verification logs found."
        assert result.error == "Missing verify_deployment_script data"

    def test_list_shape_with_output(self):
        result = parse_verification_logs({
            "verify_deployment_script": [1, {"Vault": "0x01"}, "deploying", "boom"],
        })
        assert result.logs == "=== STDOUT ===\ndeploying\n\n=== STDERR ===\nboom"
        assert result.return_code == 1
        assert result.contract_addresses == {"Vault": "0x01"}
        assert result.error == "Verification failed with code 1"
        assert not result.succeeded

    def test_list_shape_success_without_output(self):
        result = parse_verification_logs({"verify_deployment_script": [0, {}, "", ""]})
        assert result.logs == "Verification completed successfully with no output."
        assert result.error is None
        assert result.succeeded

    def test_list_shape_failure_without_output(self):
        result = parse_verification_logs({"verify_deployment_script": [2, {}, "", ""]})
        assert result.logs == "Verification failed with return code 2."

    def test_json_encoded_list(self):
        result = parse_verification_logs({
            "verify_deployment_script": '[0, {}, "ok", ""]',
        })
        assert result.logs == "=== STDOUT ===\nok\n"
        assert result.return_code == 0

    def test_log_dict_with_list(self):
        result = parse_verification_logs({
            "verify_deployment_script": {"log": ["line one", "line two"]},
        })
        assert result.logs == "line one\nline two"

    def test_log_dict_with_string(self):
        result = parse_verification_logs({"verify_deployment_script": {"log": "all good"}})
        assert result.logs == "all good"

    def test_plain_string(self):
        result = parse_verification_logs({"verify_deployment_script": "raw output"})
        assert result.logs == "raw output"

    def test_invalid_format(self):
        result = parse_verification_logs({"verify_deployment_script": 42})
        assert result.logs == "Verification logs format is invalid"
        assert result.error == "Invalid log format"


class TestExtractErrorMessage:
    def test_syntax_error(self):
        kind, message = extract_error_message("x\nSyntaxError: Unexpected token '}'\n")
        assert kind == "syntax"
        assert message == "Unexpected token '}'"

    def test_type_error(self):
        kind, message = extract_error_message("TypeError: deployer.deploy is not a function")
        assert kind == "type"
        assert message == "deployer.deploy is not a function"

    def test_short_log_without_error(self):
        assert extract_error_message("exit 1") == ("unknown", "exit 1")

    def test_long_log_without_error(self):
        kind, message = extract_error_message("output " * 30)
        assert kind == "unknown"
        assert message.startswith("Verification failed.")


class TestExplainVerificationError:
    def test_syntax(self):
        text = explain_verification_error("SyntaxError: missing ) after argument list")
        assert text.startswith("The deployment script has a syntax error: missing )")

    def test_duplicate_declaration(self):
        text = explain_verification_error(
            "SyntaxError: Identifier 'vault' has already been declared"
        )
        assert "syntax error" in text

    def test_duplicate_declaration_outside_syntax_error(self):
        text = explain_verification_error("Error: Identifier 'vault' has already been declared")
        assert "duplicate variable declaration" in text

    def test_undefined_symbol(self):
        text = explain_verification_error("ReferenceError: ethers is not defined")
        assert "doesn't exist: ethers is not defined" in text

    def test_default(self):
        text = explain_verification_error("Error: insufficient funds")
        assert text == (
            "The verification failed with error: insufficient funds. "
            "Please review the detailed logs for more information."
        )
