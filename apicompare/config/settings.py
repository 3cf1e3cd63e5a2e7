"""
Configuration loader for apicompare

Merges defaults, a YAML file, environment variables and CLI overrides, and
fetches node tokens from AWS Secrets Manager with exponential backoff.
"""

import json
import logging
import os
import time
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping, Optional

import boto3
import jsonschema
import yaml
from botocore.exceptions import ClientError

from apicompare.utils.logger import LOG_LEVELS

logger = logging.getLogger(__name__)

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "settings.schema.json")

DEFAULT_REFERENCE_URL = "/ip4/127.0.0.1/tcp/3453"
DEFAULT_CANDIDATE_URL = "/ip4/127.0.0.1/tcp/1234"

CONFIG_PATH_ENV = "APICOMPARE_CONFIG"

# Environment variable -> (field, parser)
ENV_VARS = {
    "REFERENCE_URL": ("reference_url", str),
    "REFERENCE_TOKEN": ("reference_token", str),
    "CANDIDATE_URL": ("candidate_url", str),
    "CANDIDATE_TOKEN": ("candidate_token", str),
    "COMPARE_CONCURRENCY": ("concurrency", int),
    "COMPARE_CONFIDENCE": ("confidence", int),
    "COMPARE_START_HEIGHT": ("start_height", int),
    "COMPARE_LOG_LEVEL": ("log_level", str),
    "COMPARE_METRICS_ENABLED": ("metrics_enabled", lambda v: v.lower() == "true"),
    "AWS_REGION": ("aws_region", str),
    "TOKENS_SECRET_ID": ("tokens_secret_id", str),
}


class ConfigurationError(Exception):
    """Exception raised for configuration-related errors."""

    pass


class SecretRedactionFilter(logging.Filter):
    """
    Logging filter that redacts secret values from log records.
    Replaces secret substrings with ***REDACTED*** to prevent accidental leakage.
    """

    def __init__(self, secrets: Optional[Dict[str, Any]] = None):
        """
        Initialize filter with secrets to redact.

        Args:
            secrets: Dictionary of secrets to redact (values will be masked)
        """
        super().__init__()
        self.secrets = secrets or {}
        self.redacted_values: set = set()
        if self.secrets:
            self._extract_secret_values(self.secrets)

    def _extract_secret_values(self, obj: Any, max_depth: int = 5) -> None:
        """Recursively extract all secret values from nested structures."""
        if max_depth <= 0:
            return

        if isinstance(obj, dict):
            for value in obj.values():
                self._extract_secret_values(value, max_depth - 1)
        elif isinstance(obj, (list, tuple)):
            for item in obj:
                self._extract_secret_values(item, max_depth - 1)
        elif isinstance(obj, str) and obj and len(obj) > 3:
            self.redacted_values.add(obj)

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter and redact log record."""
        record.msg = self._redact_string(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._redact_string(str(v)) for k, v in record.args.items()}
            elif isinstance(record.args, (list, tuple)):
                record.args = tuple(self._redact_string(str(arg)) for arg in record.args)
        return True

    def _redact_string(self, text: str) -> str:
        """Redact all secret values from string."""
        for secret in self.redacted_values:
            if secret in text:
                text = text.replace(secret, "***REDACTED***")
        return text


@dataclass
class Settings:
    """
    Runtime configuration.

    Sources, later wins: defaults, YAML file, environment, CLI overrides.
    Tokens still missing after that are read from Secrets Manager when
    tokens_secret_id is set.
    """

    reference_url: str = DEFAULT_REFERENCE_URL
    reference_token: Optional[str] = None
    candidate_url: str = DEFAULT_CANDIDATE_URL
    candidate_token: Optional[str] = None
    concurrency: int = 5
    confidence: int = 5
    start_height: Optional[int] = None
    poll_interval: float = 5.0
    request_timeout: float = 60.0
    log_level: str = "INFO"
    metrics_enabled: bool = False
    aws_region: str = "us-east-1"
    trigger_capacity: int = 1
    tokens_secret_id: Optional[str] = None

    @classmethod
    def load(
        cls,
        config_path: Optional[str] = None,
        overrides: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        """
        Build settings from every source.

        Args:
            config_path: YAML file (defaults to $APICOMPARE_CONFIG if set)
            overrides: CLI values; None entries are ignored
            environ: Environment mapping (defaults to os.environ)

        Raises:
            ConfigurationError: If any source is unreadable or a value is invalid
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        config_path = config_path or environ.get(CONFIG_PATH_ENV)
        if config_path:
            values.update(load_config_file(config_path))

        values.update(cls._from_environ(environ))
        values.update({k: v for k, v in (overrides or {}).items() if v is not None})

        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(f"Unknown settings: {sorted(unknown)}")

        settings = cls(**values)
        settings.validate()

        if settings.tokens_secret_id and not (
            settings.reference_token and settings.candidate_token
        ):
            settings._apply_secret_tokens()

        return settings

    @staticmethod
    def _from_environ(environ: Mapping[str, str]) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for var, (name, parse) in ENV_VARS.items():
            raw = environ.get(var)
            if raw is None or raw == "":
                continue
            try:
                values[name] = parse(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {var}: {raw!r}") from e
        return values

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: If a value is out of range
        """
        if not self.reference_url or not self.candidate_url:
            raise ConfigurationError("Both reference_url and candidate_url are required")
        if self.confidence < 0:
            raise ConfigurationError(f"confidence must be >= 0, got {self.confidence}")
        if self.start_height is not None and self.start_height < 0:
            raise ConfigurationError(f"start_height must be >= 0, got {self.start_height}")
        if self.poll_interval <= 0 or self.request_timeout <= 0:
            raise ConfigurationError("poll_interval and request_timeout must be positive")
        if self.trigger_capacity < 1:
            raise ConfigurationError(
                f"trigger_capacity must be >= 1, got {self.trigger_capacity}"
            )
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigurationError(f"Unknown log level: {self.log_level}")
        self.log_level = self.log_level.upper()

    def _apply_secret_tokens(self) -> None:
        try:
            secret = Settings._get_secret_value(self.tokens_secret_id, self.aws_region)
        except RuntimeError as e:
            raise ConfigurationError(str(e)) from e

        self.reference_token = self.reference_token or secret.get("reference_token")
        self.candidate_token = self.candidate_token or secret.get("candidate_token")
        logger.info(f"Loaded node tokens from secret {self.tokens_secret_id}")

    def tokens(self) -> Dict[str, str]:
        """Configured tokens, keyed by side, for log redaction."""
        out = {}
        if self.reference_token:
            out["reference_token"] = self.reference_token
        if self.candidate_token:
            out["candidate_token"] = self.candidate_token
        return out

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        if redact:
            for key in ("reference_token", "candidate_token"):
                if data[key]:
                    data[key] = "***REDACTED***"
        return data

    @staticmethod
    def _get_secret_value(
        secret_id: str,
        region_name: str = "us-east-1",
        max_retries: int = 3,
        base_wait: float = 1.0,
    ) -> Dict[str, Any]:
        """
        Fetch secret from Secrets Manager with exponential backoff.

        Args:
            secret_id: Secret identifier in Secrets Manager
            region_name: AWS region of the secret
            max_retries: Maximum number of retry attempts
            base_wait: Base wait time in seconds for exponential backoff

        Returns:
            Parsed secret JSON as dictionary

        Raises:
            RuntimeError: If secret cannot be retrieved after retries
        """
        client = boto3.client("secretsmanager", region_name=region_name)

        for attempt in range(max_retries):
            try:
                response = client.get_secret_value(SecretId=secret_id)
                secret_string = response.get("SecretString")
                if not secret_string:
                    raise RuntimeError(f"Secret {secret_id} has empty value")
                return json.loads(secret_string)
            except ClientError as e:
                error_code = e.response["Error"]["Code"]
                if error_code == "ResourceNotFoundException":
                    raise RuntimeError(
                        f"Secret '{secret_id}' not found in Secrets Manager. "
                        f"Please verify the secret exists in region {region_name}"
                    ) from e
                elif error_code in ["AccessDeniedException", "UnauthorizedOperation"]:
                    raise RuntimeError(
                        f"Access denied to secret '{secret_id}'. "
                        f"Verify the caller has secretsmanager:GetSecretValue permission"
                    ) from e
                elif error_code == "DecryptionFailure":
                    raise RuntimeError(
                        f"Failed to decrypt secret '{secret_id}'. Verify KMS key permissions"
                    ) from e
                else:
                    if attempt < max_retries - 1:
                        wait_time = base_wait * (2**attempt)
                        logger.warning(
                            f"Transient error fetching secret {secret_id}: {error_code}. "
                            f"Retrying in {wait_time}s (attempt {attempt + 1}/{max_retries})"
                        )
                        time.sleep(wait_time)
                    else:
                        raise RuntimeError(
                            f"Failed to retrieve secret '{secret_id}' after {max_retries} attempts: {error_code}"
                        ) from e
            except json.JSONDecodeError as e:
                raise RuntimeError(f"Secret '{secret_id}' contains invalid JSON: {str(e)}") from e

        raise RuntimeError(
            f"Failed to retrieve secret '{secret_id}' - exhausted all retry attempts"
        )


def load_config_file(config_path: str, schema_path: str = SCHEMA_PATH) -> Dict[str, Any]:
    """
    Load a YAML configuration file and validate it against the schema.

    Raises:
        ConfigurationError: If the file is missing, not YAML, or fails validation
    """
    try:
        with open(schema_path, "r", encoding="utf-8") as f:
            schema = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot load settings schema {schema_path}: {e}") from e

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Configuration file not found: {config_path}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not content:
        logger.warning(f"Empty configuration file: {config_path}")
        return {}

    try:
        jsonschema.validate(instance=content, schema=schema)
    except jsonschema.ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e.message}") from e

    logger.debug(f"Loaded configuration from {config_path}")
    return content


def setup_logging_redaction(secrets: Dict[str, Any]) -> SecretRedactionFilter:
    """
    Install a redaction filter for `secrets` on the root logger and every
    apicompare logger created so far.
    """
    redaction_filter = SecretRedactionFilter(secrets)
    names = [name for name in logging.root.manager.loggerDict if name.startswith("apicompare")]
    for target in [logging.getLogger()] + [logging.getLogger(name) for name in names]:
        target.addFilter(redaction_filter)
    return redaction_filter
