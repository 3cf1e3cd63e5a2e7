"""
Unit tests for configuration loader (apicompare/config/settings.py)

Tests covering:
- SecretRedactionFilter for logging
- Settings sources and precedence (defaults, YAML, environment, overrides)
- Schema validation of the YAML file
- Secrets Manager integration for node tokens
"""

import json
import logging
from unittest.mock import MagicMock, patch

import boto3
import pytest
import yaml
from botocore.exceptions import ClientError
from moto import mock_aws

from apicompare.config.settings import (
    DEFAULT_CANDIDATE_URL,
    DEFAULT_REFERENCE_URL,
    ConfigurationError,
    SecretRedactionFilter,
    Settings,
    load_config_file,
    setup_logging_redaction,
)

TOKENS_SECRET_ID = "apicompare/node-tokens"


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fixture for AWS credentials."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def config_file(tmp_path):
    """Write a YAML config file and return its path."""

    def write(content):
        path = tmp_path / "apicompare.yaml"
        path.write_text(content if isinstance(content, str) else yaml.safe_dump(content))
        return str(path)

    return write


class TestSecretRedactionFilter:
    """Tests for SecretRedactionFilter class."""

    def test_redaction_filter_initialization(self):
        """Test filter initializes without secrets."""
        filter_obj = SecretRedactionFilter()
        assert filter_obj.secrets == {}
        assert filter_obj.redacted_values == set()

    def test_redaction_filter_nested_secrets(self):
        """Test filter extracts values from nested structures."""
        secrets = {"nodes": {"reference": "ref_token_1"}, "extra": ["cand_token_2"]}
        filter_obj = SecretRedactionFilter(secrets)
        assert "ref_token_1" in filter_obj.redacted_values
        assert "cand_token_2" in filter_obj.redacted_values

    def test_redaction_filter_redacts_message(self):
        """Test filter redacts a token from the log message."""
        filter_obj = SecretRedactionFilter({"reference_token": "eyJhbGciOi.secret"})

        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="",
            lineno=0,
            msg='{"message": "auth header Bearer eyJhbGciOi.secret"}',
            args=(),
            exc_info=None,
        )
        assert filter_obj.filter(record) is True
        assert "***REDACTED***" in record.msg
        assert "eyJhbGciOi.secret" not in record.msg

    def test_redaction_filter_with_args_tuple(self):
        """Test filter redacts args tuple."""
        filter_obj = SecretRedactionFilter({"candidate_token": "key123"})

        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="",
            lineno=0,
            msg="API call with %s",
            args=("key123",),
            exc_info=None,
        )
        filter_obj.filter(record)
        assert record.args[0] == "***REDACTED***"

    def test_redaction_filter_ignores_short_strings(self):
        """Test filter doesn't redact very short strings."""
        filter_obj = SecretRedactionFilter({"x": "y", "a": "abc"})
        assert filter_obj.redacted_values == set()

    def test_setup_logging_redaction_installs_filter(self):
        """Test the filter is attached to the root and package loggers."""
        logging.getLogger("apicompare.test_config_redaction")
        redaction_filter = setup_logging_redaction({"reference_token": "secret-value"})
        try:
            assert redaction_filter in logging.getLogger().filters
            assert redaction_filter in logging.getLogger("apicompare.test_config_redaction").filters
        finally:
            names = [n for n in logging.root.manager.loggerDict if n.startswith("apicompare")]
            for target in [logging.getLogger()] + [logging.getLogger(n) for n in names]:
                target.removeFilter(redaction_filter)


class TestSettingsSources:
    """Tests for Settings.load precedence."""

    def test_defaults(self):
        """Test defaults when no source provides a value."""
        settings = Settings.load(environ={})

        assert settings.reference_url == DEFAULT_REFERENCE_URL
        assert settings.candidate_url == DEFAULT_CANDIDATE_URL
        assert settings.concurrency == 5
        assert settings.confidence == 5
        assert settings.start_height is None
        assert settings.trigger_capacity == 1
        assert settings.metrics_enabled is False
        assert settings.log_level == "INFO"

    def test_environment(self):
        """Test environment variables are parsed into their fields."""
        settings = Settings.load(
            environ={
                "REFERENCE_URL": "/ip4/10.0.0.1/tcp/3453",
                "CANDIDATE_TOKEN": "cand-token",
                "COMPARE_CONCURRENCY": "8",
                "COMPARE_START_HEIGHT": "1200",
                "COMPARE_METRICS_ENABLED": "TRUE",
                "COMPARE_LOG_LEVEL": "debug",
            }
        )

        assert settings.reference_url == "/ip4/10.0.0.1/tcp/3453"
        assert settings.candidate_token == "cand-token"
        assert settings.concurrency == 8
        assert settings.start_height == 1200
        assert settings.metrics_enabled is True
        assert settings.log_level == "DEBUG"

    def test_invalid_environment_integer(self):
        """Test a non-numeric integer variable raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="COMPARE_CONCURRENCY"):
            Settings.load(environ={"COMPARE_CONCURRENCY": "many"})

    def test_yaml_then_env_then_overrides(self, config_file):
        """Test later sources win and None overrides are ignored."""
        path = config_file({"concurrency": 2, "confidence": 3, "poll_interval": 0.5})

        settings = Settings.load(
            config_path=path,
            environ={"COMPARE_CONFIDENCE": "7"},
            overrides={"concurrency": 9, "start_height": None},
        )

        assert settings.concurrency == 9
        assert settings.confidence == 7
        assert settings.poll_interval == 0.5
        assert settings.start_height is None

    def test_config_path_from_environment(self, config_file):
        """Test APICOMPARE_CONFIG points at the YAML file."""
        path = config_file({"trigger_capacity": 3})
        settings = Settings.load(environ={"APICOMPARE_CONFIG": path})
        assert settings.trigger_capacity == 3

    def test_unknown_override(self):
        """Test unknown keys are rejected."""
        with pytest.raises(ConfigurationError, match="Unknown settings"):
            Settings.load(environ={}, overrides={"workers": 3})

    @pytest.mark.parametrize(
        "overrides",
        [
            {"confidence": -1},
            {"start_height": -5},
            {"trigger_capacity": 0},
            {"log_level": "LOUD"},
            {"reference_url": ""},
        ],
    )
    def test_validation(self, overrides):
        """Test out-of-range values raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            Settings.load(environ={}, overrides=overrides)

    def test_to_dict_redacts_tokens(self):
        """Test tokens are hidden in the dictionary form."""
        settings = Settings(reference_token="ref-secret", candidate_token=None)
        data = settings.to_dict()

        assert data["reference_token"] == "***REDACTED***"
        assert data["candidate_token"] is None
        assert settings.to_dict(redact=False)["reference_token"] == "ref-secret"
        assert settings.tokens() == {"reference_token": "ref-secret"}


class TestLoadConfigFile:
    """Tests for YAML loading and schema validation."""

    def test_valid_file(self, config_file):
        """Test a valid file is returned as a dict."""
        path = config_file({"reference_url": "ws://127.0.0.1:3453/rpc/v1", "confidence": 0})
        assert load_config_file(path) == {
            "reference_url": "ws://127.0.0.1:3453/rpc/v1",
            "confidence": 0,
        }

    def test_empty_file(self, config_file):
        """Test an empty file yields no values."""
        assert load_config_file(config_file("")) == {}

    def test_file_not_found(self, tmp_path):
        """Test a missing file raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config_file(str(tmp_path / "missing.yaml"))

    def test_invalid_yaml(self, config_file):
        """Test malformed YAML raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config_file(config_file("concurrency: [1, 2"))

    def test_schema_violation(self, config_file):
        """Test values of the wrong type fail validation."""
        with pytest.raises(ConfigurationError, match="validation failed"):
            load_config_file(config_file({"concurrency": "five"}))

    def test_unknown_key_in_file(self, config_file):
        """Test keys outside the schema fail validation."""
        with pytest.raises(ConfigurationError, match="validation failed"):
            load_config_file(config_file({"workers": 3}))


class TestSecretsManagerIntegration:
    """Tests for Secrets Manager integration."""

    @mock_aws
    def test_get_secret_value_success(self, aws_credentials):
        """Test successful secret retrieval from Secrets Manager."""
        client = boto3.client("secretsmanager", region_name="us-east-1")
        secret_value = {"reference_token": "ref", "candidate_token": "cand"}
        client.create_secret(Name=TOKENS_SECRET_ID, SecretString=json.dumps(secret_value))

        assert Settings._get_secret_value(TOKENS_SECRET_ID) == secret_value

    @mock_aws
    def test_get_secret_value_not_found(self, aws_credentials):
        """Test error when secret not found."""
        with pytest.raises(RuntimeError) as exc_info:
            Settings._get_secret_value("nonexistent-secret")
        assert "not found" in str(exc_info.value)

    @mock_aws
    def test_get_secret_value_invalid_json(self, aws_credentials):
        """Test error when secret contains invalid JSON."""
        client = boto3.client("secretsmanager", region_name="us-east-1")
        client.create_secret(Name="bad-secret", SecretString="not-json-{invalid}")

        with pytest.raises(RuntimeError) as exc_info:
            Settings._get_secret_value("bad-secret")
        assert "invalid JSON" in str(exc_info.value)

    @patch("apicompare.config.settings.time.sleep")
    @patch("boto3.client")
    def test_transient_errors_are_retried(self, mock_boto_client, mock_sleep):
        """Test throttling errors back off exponentially before giving up."""
        mock_client = MagicMock()
        mock_client.get_secret_value.side_effect = ClientError(
            {"Error": {"Code": "ThrottlingException", "Message": "slow down"}},
            "GetSecretValue",
        )
        mock_boto_client.return_value = mock_client

        with pytest.raises(RuntimeError, match="after 3 attempts"):
            Settings._get_secret_value(TOKENS_SECRET_ID, base_wait=0.5)

        assert mock_client.get_secret_value.call_count == 3
        assert [c[0][0] for c in mock_sleep.call_args_list] == [0.5, 1.0]

    @mock_aws
    def test_missing_tokens_loaded_from_secret(self, aws_credentials):
        """Test tokens absent from other sources are filled from the secret."""
        client = boto3.client("secretsmanager", region_name="us-east-1")
        client.create_secret(
            Name=TOKENS_SECRET_ID,
            SecretString=json.dumps({"reference_token": "sm-ref", "candidate_token": "sm-cand"}),
        )

        settings = Settings.load(
            environ={"TOKENS_SECRET_ID": TOKENS_SECRET_ID, "REFERENCE_TOKEN": "env-ref"}
        )

        assert settings.reference_token == "env-ref"
        assert settings.candidate_token == "sm-cand"

    @mock_aws
    def test_missing_secret_is_configuration_error(self, aws_credentials):
        """Test an unreadable token secret fails configuration loading."""
        with pytest.raises(ConfigurationError, match="not found"):
            Settings.load(environ={"TOKENS_SECRET_ID": "missing-secret"})

    def test_secret_not_read_when_tokens_present(self):
        """Test Secrets Manager is skipped when both tokens are configured."""
        with patch.object(Settings, "_get_secret_value") as mock_get:
            Settings.load(
                environ={
                    "TOKENS_SECRET_ID": TOKENS_SECRET_ID,
                    "REFERENCE_TOKEN": "a-token",
                    "CANDIDATE_TOKEN": "b-token",
                }
            )
        mock_get.assert_not_called()
